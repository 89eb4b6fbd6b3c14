"""
Configuration module for Order Sheet Intake
Environment-agnostic: Works locally, in Docker, and on Google Cloud
Loads environment variables and validates configuration
"""
import os
import tempfile
from pathlib import Path
from dotenv import load_dotenv

# Get project root directory (parent of src/)
PROJECT_ROOT = Path(__file__).parent.parent

# Load environment variables from .env file (if exists - local dev only)
env_file = PROJECT_ROOT / '.env'
if env_file.exists():
    load_dotenv(env_file)

# ═══════════════════════════════════════════════════════════════════
# ENVIRONMENT DETECTION
# ═══════════════════════════════════════════════════════════════════

def detect_environment() -> str:
    """
    Detect which environment we're running in

    Returns:
        'cloud_run', 'kubernetes', 'docker', or 'local'
    """
    # Cloud Run sets K_SERVICE
    if os.getenv('K_SERVICE'):
        return 'cloud_run'

    # Kubernetes sets KUBERNETES_SERVICE_HOST
    if os.getenv('KUBERNETES_SERVICE_HOST'):
        return 'kubernetes'

    # Docker typically has /.dockerenv file
    if Path('/.dockerenv').exists():
        return 'docker'

    if os.getenv('GOOGLE_CLOUD_PROJECT') or os.getenv('GCP_PROJECT'):
        return 'cloud_run'

    return 'local'

RUNTIME_ENVIRONMENT = detect_environment()

# ═══════════════════════════════════════════════════════════════════
# CREDENTIAL RESOLUTION - Smart multi-source loading
# ═══════════════════════════════════════════════════════════════════

_credentials_path = None  # Lazy loaded

def resolve_credentials() -> str:
    """
    Resolve Google service account credentials from multiple sources.
    Priority order:
    1. Local file (GOOGLE_SHEETS_CREDENTIALS_FILE env var or default path)
    2. JSON string in environment variable (GOOGLE_SHEETS_CREDENTIALS_JSON)
    3. Application Default Credentials (for Workload Identity)

    Returns:
        Path to credentials JSON file (may be temp file for JSON string sources)
        None if using Application Default Credentials
    """
    # Method 1: Local file path from environment
    creds_file = os.getenv('GOOGLE_SHEETS_CREDENTIALS_FILE')
    if creds_file:
        if not os.path.isabs(creds_file):
            creds_file = str(PROJECT_ROOT / creds_file)
        if os.path.exists(creds_file):
            print(f"[CONFIG] Using credentials file: {creds_file}")
            return creds_file

    # Default local path
    default_path = PROJECT_ROOT / 'config' / 'credentials.json'
    if default_path.exists():
        print(f"[CONFIG] Using default credentials file: {default_path}")
        return str(default_path)

    # Method 2: JSON string in environment variable (Cloud Run with secrets)
    creds_json = os.getenv('GOOGLE_SHEETS_CREDENTIALS_JSON')
    if creds_json:
        temp_path = Path(tempfile.gettempdir()) / 'order_intake_credentials.json'
        temp_path.write_text(creds_json)
        print("[CONFIG] Using credentials from environment variable (GOOGLE_SHEETS_CREDENTIALS_JSON)")
        return str(temp_path)

    # Method 3: Application Default Credentials (Cloud Run with Workload Identity)
    if RUNTIME_ENVIRONMENT in ('cloud_run', 'kubernetes'):
        print("[CONFIG] Using Application Default Credentials (Workload Identity)")
        return None  # Signal to use ADC

    raise ValueError(
        "No valid credentials source found. Set one of:\n"
        "  - GOOGLE_SHEETS_CREDENTIALS_FILE (path to JSON file)\n"
        "  - GOOGLE_SHEETS_CREDENTIALS_JSON (JSON string)\n"
        "  - GOOGLE_OAUTH_TOKEN_FILE (authorized user token)\n"
        "  - Place credentials.json in config/ folder"
    )

def get_credentials_path():
    """Get credentials path (lazy loaded)"""
    global _credentials_path
    if _credentials_path is None:
        _credentials_path = resolve_credentials()
    return _credentials_path

# ═══════════════════════════════════════════════════════════════════
# WRITABLE PATHS - Handle containerized environments
# ═══════════════════════════════════════════════════════════════════

def get_writable_path(folder_name: str) -> str:
    """Get a writable path that works in all environments"""
    env_path = os.getenv(folder_name.upper() + '_FOLDER')
    if env_path:
        if os.path.isabs(env_path):
            path = Path(env_path)
        else:
            path = PROJECT_ROOT / env_path
    else:
        path = PROJECT_ROOT / folder_name

    # In containers, /app might be read-only; use /tmp as fallback
    if not path.exists():
        try:
            path.mkdir(parents=True, exist_ok=True)
        except (PermissionError, OSError):
            path = Path(tempfile.gettempdir()) / 'order_intake' / folder_name
            path.mkdir(parents=True, exist_ok=True)

    return str(path)

# ═══════════════════════════════════════════════════════════════════
# CONFIGURATION VALUES
# ═══════════════════════════════════════════════════════════════════

# Google Gemini Configuration (free-text order parsing)
GOOGLE_API_KEY = os.getenv('GOOGLE_API_KEY')
GEMINI_MODEL = os.getenv('GEMINI_MODEL', 'gemini-2.5-flash')

# Google Sheets / Drive Configuration
GOOGLE_SHEETS_CREDENTIALS_FILE = os.getenv(
    'GOOGLE_SHEETS_CREDENTIALS_FILE',
    str(PROJECT_ROOT / 'config' / 'credentials.json')
)
# Authorized-user token (OAuth flow) - takes precedence over the service account
GOOGLE_OAUTH_TOKEN_FILE = os.getenv('GOOGLE_OAUTH_TOKEN_FILE', '')
SPREADSHEET_ID = os.getenv('SPREADSHEET_ID', '')
DRIVE_FOLDER_ID = os.getenv('DRIVE_FOLDER_ID', '')

GOOGLE_SCOPES = [
    'https://www.googleapis.com/auth/spreadsheets',
    'https://www.googleapis.com/auth/drive',
]

# Monitoring Configuration
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FILE_MAX_MB = int(os.getenv('LOG_FILE_MAX_MB', '10'))
LOG_FILE_BACKUP_COUNT = int(os.getenv('LOG_FILE_BACKUP_COUNT', '5'))
LOG_FOLDER = get_writable_path('logs')

# ═══════════════════════════════════════════════════════════════════
# ORDER SHEET SCHEMA
# ═══════════════════════════════════════════════════════════════════

# Reserved trailing columns - always computed, never read from the order
ATTACHMENT_COLUMN = os.getenv('ATTACHMENT_COLUMN', '이미지')
TIMESTAMP_COLUMN = os.getenv('TIMESTAMP_COLUMN', '주문일시')
RESERVED_COLUMNS = [ATTACHMENT_COLUMN, TIMESTAMP_COLUMN]

# Fixed order fields, in sheet order (positional payloads follow this order)
ORDER_FIXED_COLUMNS = [
    '제품명',
    '수취인명',
    '연락처',
    '은행',
    '계좌(-)',
    '예금주',
    '결제금액(원 쓰지 마세요)',
    '아이디',
    '주문번호',
    '주소',
    '닉네임',
    '회수이름',
    '회수연락처',
]

# Canonical header row written to every manager tab
CANONICAL_COLUMNS = ORDER_FIXED_COLUMNS + RESERVED_COLUMNS

# Column used to name uploaded attachments
ATTACHMENT_NAME_COLUMN = os.getenv('ATTACHMENT_NAME_COLUMN', '수취인명')

# ═══════════════════════════════════════════════════════════════════
# SHEET RECONCILIATION STRATEGIES
# ═══════════════════════════════════════════════════════════════════

# 'static_fixed' or 'adaptive_extend'
HEADER_STRATEGY = os.getenv('HEADER_STRATEGY', 'static_fixed')

# 'append_only' or 'gap_reuse'
INSERTION_POLICY = os.getenv('INSERTION_POLICY', 'append_only')

# Gap reuse only takes a blank run large enough for the whole batch
GAP_REUSE_REQUIRE_FIT = os.getenv('GAP_REUSE_REQUIRE_FIT', 'true').lower() == 'true'

# Append-only policy uses the Sheets append endpoint instead of an explicit start row
APPEND_USE_NATIVE = os.getenv('APPEND_USE_NATIVE', 'false').lower() == 'true'

# 'keyed' (JSON objects) or 'positional' (JSON arrays in ORDER_FIXED_COLUMNS order)
ORDER_RECORD_FORMAT = os.getenv('ORDER_RECORD_FORMAT', 'keyed')

# Serialize header-check -> range-resolve -> write per manager tab
SERIALIZE_TAB_WRITES = os.getenv('SERIALIZE_TAB_WRITES', 'true').lower() == 'true'

# Submission timestamp rendering
TIMESTAMP_TIMEZONE = os.getenv('TIMESTAMP_TIMEZONE', 'Asia/Seoul')
TIMESTAMP_LOCALE = os.getenv('TIMESTAMP_LOCALE', 'ko-KR')

# Upload limits
MAX_IMAGES_PER_SUBMISSION = int(os.getenv('MAX_IMAGES_PER_SUBMISSION', '20'))
ALLOWED_IMAGE_FORMATS = os.getenv('ALLOWED_IMAGE_FORMATS', 'jpg,jpeg,png,gif,webp,heic,pdf').split(',')

# ═══════════════════════════════════════════════════════════════════
# REST API (FastAPI)
# ═══════════════════════════════════════════════════════════════════

API_PORT = int(os.getenv('API_PORT', '3000'))
API_HOST = os.getenv('API_HOST', '0.0.0.0')

# Cloud Run PORT override
_cloud_run_port = os.getenv('PORT')
if _cloud_run_port:
    API_PORT = int(_cloud_run_port)

# CORS configuration (comma-separated origins)
API_CORS_ORIGINS = os.getenv('API_CORS_ORIGINS', 'http://localhost:3000').split(',')

VALID_HEADER_STRATEGIES = ('static_fixed', 'adaptive_extend')
VALID_INSERTION_POLICIES = ('append_only', 'gap_reuse')
VALID_RECORD_FORMATS = ('keyed', 'positional')


def validate_config():
    """Validate that all required configuration is present"""
    errors = []

    print(f"[CONFIG] Runtime environment: {RUNTIME_ENVIRONMENT}")

    if not SPREADSHEET_ID:
        errors.append("SPREADSHEET_ID is not set")

    if HEADER_STRATEGY not in VALID_HEADER_STRATEGIES:
        errors.append(f"HEADER_STRATEGY must be one of {VALID_HEADER_STRATEGIES}, got '{HEADER_STRATEGY}'")

    if INSERTION_POLICY not in VALID_INSERTION_POLICIES:
        errors.append(f"INSERTION_POLICY must be one of {VALID_INSERTION_POLICIES}, got '{INSERTION_POLICY}'")

    if ORDER_RECORD_FORMAT not in VALID_RECORD_FORMATS:
        errors.append(f"ORDER_RECORD_FORMAT must be one of {VALID_RECORD_FORMATS}, got '{ORDER_RECORD_FORMAT}'")

    if len(set(CANONICAL_COLUMNS)) != len(CANONICAL_COLUMNS):
        errors.append("CANONICAL_COLUMNS contains duplicate column names")

    # An OAuth token file is enough; otherwise a service account must resolve
    if not (GOOGLE_OAUTH_TOKEN_FILE and os.path.exists(GOOGLE_OAUTH_TOKEN_FILE)):
        try:
            creds_path = get_credentials_path()
            if creds_path and not os.path.exists(creds_path):
                errors.append(f"Google credentials file not found: {creds_path}")
        except ValueError as e:
            errors.append(str(e))

    if errors:
        raise ValueError("Configuration errors:\n" + "\n".join(errors))

    return True


if __name__ == "__main__":
    try:
        validate_config()
        print("[OK] Configuration validated successfully")
    except ValueError as e:
        print(f"[FAIL] Configuration validation failed:\n{e}")
