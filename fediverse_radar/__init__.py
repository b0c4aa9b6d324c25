"""Cross-reference Mastodon and Bluesky follow lists through the Bridgy Fed bridge."""

__version__ = "1.0.0"
