"""
Configuration constants for the notes-to-answers pipeline.
"""

from pathlib import Path

# Directory paths
PROJECT_ROOT = Path(__file__).parent
OUTPUT_DIR = PROJECT_ROOT / "output"
DEFAULT_OUTPUT_NAME = "answers"

# Gemini configuration
GEMINI_API_KEY_ENV = "GEMINI_API_KEY"
LITE_MODEL = "gemini-flash-latest"       # relevance probe
ANSWER_MODEL = "gemini-2.5-pro"          # answer synthesis + question extraction
IMAGE_MODEL = "imagen-4.0-generate-001"  # illustrative images
GENERATED_IMAGE_MIME = "image/jpeg"

# Rate limit retry policy
# delay = INITIAL_RETRY_DELAY * 2^(attempt-1) + uniform(0, RETRY_JITTER)
MAX_RETRIES = 3
INITIAL_RETRY_DELAY = 1.0  # seconds
RETRY_JITTER = 1.0  # seconds
RATE_LIMIT_MARKERS = ["RESOURCE_EXHAUSTED", "429"]

# Answer generation
# Max LLM calls in flight at once (upstream quota, not CPU)
CONCURRENCY_LIMIT = 2
RELEVANCE_PROBE_CHARS = 8000

# Image directive prefixes expected on their own line in the answer
USE_IMAGE_PREFIX = "USE_IMAGE:"
GENERATE_IMAGE_PREFIX = "GENERATE_IMAGE_PROMPT:"

# Document normalization
SCAN_TEXT_THRESHOLD = 100  # chars of page text below which a page is rendered
PAGE_RENDER_SCALE = 1.5
IMAGE_DEDUP_PREFIX_CHARS = 100  # base64 chars used as the de-dup key
NOTES_SEPARATOR = "\n\n---\n\n"

PDF_EXTENSIONS = [".pdf"]
DOCX_EXTENSIONS = [".docx"]
TEXT_EXTENSIONS = [".txt", ".md", ".markdown"]

# Image types sent to the model as-is; anything else is re-encoded to PNG
NATIVE_IMAGE_MIME_TYPES = ["image/png", "image/jpeg", "image/webp", "image/heic", "image/heif"]

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

# Fallback answers for questions that could not be processed
RATE_LIMIT_FALLBACK_ANSWER = (
    "Could not generate an answer due to API rate limits. "
    "Please try again later or process fewer questions at once."
)
GENERIC_FALLBACK_ANSWER = (
    "Sorry, an error occurred while generating the answer for this question. "
    "Please try again."
)

# Export
EXPORT_FORMATS = ["md", "txt", "docx"]
EXPORT_TITLE = "Q&A Results"
EXPORT_IMAGE_WIDTH_INCHES = 5.0
