"""Common literal values used across book_pages.

These constants keep filenames and metadata keys centralized so templates,
generators, publishers, and tests can import the same values without drifting.

Examples
--------
>>> from book_pages import _constants
>>> _constants.SUMMARY_FILENAME
'SUMMARY.md'
>>> _constants.PUBLISH_META_FILENAME.startswith('.')
True
"""

SUMMARY_FILENAME = "SUMMARY.md"
DEFAULT_CONFIG_FILENAME = "book.yaml"
SEARCH_INDEX_FILENAME = "searchindex.json"
HIGHLIGHT_CSS_FILENAME = "highlight.css"
NOT_FOUND_FILENAME = "404.html"
PUBLISH_META_FILENAME = ".book-pages-publish.json"
STAGING_PREFIX = ".book-pages-staging-"
