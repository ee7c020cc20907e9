"""User-facing messages shared across core and server layers."""

NO_ACTIVE_ATTEMPT_MESSAGE: str = "Error: Test data is missing."
TIME_UP_MESSAGE: str = "Time's up! Your test was submitted automatically."
ABANDON_CONFIRM_MESSAGE: str = "Are you sure you want to abandon this test? Your progress will be lost."
TEST_SAVED_MESSAGE: str = "Test created successfully!"
TEST_UPDATED_MESSAGE: str = "Test updated successfully!"
TEST_DELETED_MESSAGE: str = "Test deleted"
ATTEMPT_SAVED_MESSAGE: str = "Attempt saved successfully"
DATA_SYNCED_MESSAGE: str = "Data synced successfully"
DATA_RESTORED_MESSAGE: str = "Data restored successfully!"
INVALID_CREDENTIALS_MESSAGE: str = "Invalid email or password"
