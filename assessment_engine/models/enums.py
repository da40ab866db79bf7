from enum import Enum


class UserRole(str, Enum):
    """Roles resolved from identity tokens"""

    ISSUER = "issuer"  # Recruiter who defines and assigns tests
    CANDIDATE = "candidate"


class TestStatus(str, Enum):
    """Lifecycle of a test definition"""

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class QuestionType(str, Enum):
    MCQ = "mcq"
    CODING = "coding"


class SubmissionStatus(str, Enum):
    """Lifecycle of one candidate's attempt"""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    EVALUATED = "evaluated"  # Manual review only
    EXPIRED = "expired"


class FinalizeTrigger(str, Enum):
    """What ended an attempt"""

    MANUAL = "manual"  # Candidate pressed submit
    TIMEOUT = "timeout"  # Deadline passed (request after deadline or sweep)
    PROCTORING = "proctoring"  # Integrity violations crossed the hard limit


class ProctoringEventType(str, Enum):
    TAB_SWITCH = "tab_switch"
    FULLSCREEN_EXIT = "fullscreen_exit"
    COPY_PASTE_ATTEMPT = "copy_paste_attempt"
    SCREENSHOT_ATTEMPT = "screenshot_attempt"


class ReviewDecision(str, Enum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"


class Language(str, Enum):
    """Languages accepted for code submissions"""

    PYTHON = "python"
    JAVASCRIPT = "javascript"
    JAVA = "java"
    CPP = "cpp"
    C = "c"
    TYPESCRIPT = "typescript"
    RUBY = "ruby"
    GO = "go"
    RUST = "rust"
    PHP = "php"
