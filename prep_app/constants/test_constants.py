"""Test-related constants shared across core and server layers."""

DEFAULT_QUESTION_COUNT: int = 25
MAX_QUESTION_COUNT: int = 100
DEFAULT_DURATION_MINUTES: int = 30
DEFAULT_LANGUAGE: str = "English"
DEFAULT_MARKS_PER_QUESTION: float = 2.0
DEFAULT_NEGATIVE_MARKING: float = 0.66
OPTIONS_PER_QUESTION: int = 4

UNCATEGORIZED_SUBJECT: str = "Uncategorized"
GENERAL_TOPIC: str = "General"

MIN_PDF_TEXT_LENGTH: int = 100
DEFAULT_PDF_MAX_IMAGE_PAGES: int = 10
PDF_RENDER_ZOOM: float = 2.0

TIMER_INTERVAL_SECONDS: float = 1.0
RECENT_ATTEMPT_COUNT: int = 3
