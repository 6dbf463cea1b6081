"""Shared constants for couchflow."""

DESIGN_DOC_PREFIX = "_design/"

DEFAULT_INDEX_TYPE = "json"
INDEX_TYPES = ("json", "text")

MAX_FILENAME_LENGTH = 200
INVALID_FILENAME_CHARS = ("/", "\\", ":", "*", "?", '"', "<", ">", "|")

DEFAULT_PROGRESS_INTERVAL = 100
DEFAULT_PAGE_SIZE = 1000
