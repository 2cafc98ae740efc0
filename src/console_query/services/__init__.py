"""Query state codecs, composition, caching and list page services."""
