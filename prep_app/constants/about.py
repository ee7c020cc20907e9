"""Static metadata describing PrepQuiz."""

APP_NAME = "PrepQuiz"
APP_VERSION = "0.1"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "PrepQuiz generates multiple-choice practice tests, runs timed attempts with a "
    "question palette, and keeps a performance history with subject analytics."
)
