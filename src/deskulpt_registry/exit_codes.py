"""Exit codes for the deskulpt-registry CLI.

Every fatal error aborts the whole run; the code only tells CI which kind of
failure stopped it.
"""

# Success
SUCCESS = 0

# Errors
GENERAL_ERROR = 1
# Usage errors, reported by click before a command runs
INVALID_ARGS = 2
CONFIG_ERROR = 3
VALIDATION_ERROR = 4
GIT_ERROR = 5
PUSH_ERROR = 6
