"""PodcastVideoGenerator package.

This package orchestrates long-running video generation jobs against
several providers, with rate-limit recovery, persistence across restarts
and chained generation of short clips.
"""

from .pipeline import PodcastVideoGenerator  # noqa: F401

__all__ = ["PodcastVideoGenerator"]
