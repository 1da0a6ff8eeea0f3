IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg"}

ALIGN_LEFT = "left"
ALIGN_CENTER = "center"
ALIGN_RIGHT = "right"

SOURCE_TEMPLATE = "template"
SOURCE_ZIP = "zip"

ASSIGN_FILENAME = "filename"
ASSIGN_ROW_ORDER = "rowOrder"

DEFAULT_IMAGE_COLUMN = "image_file"
DEFAULT_FONT_SIZE = 24
MIN_FONT_SIZE = 8
MAX_FONT_SIZE = 120
DEFAULT_TEXT_COLOR = "#111111"
DEFAULT_ZONE_BG_COLOR = "rgba(255,255,255,0.85)"
ZONE_BG_RADIUS = 12
ZONE_PADDING = 6

# 等宽估算：字符宽度与行高相对字号的比例
CHAR_WIDTH_RATIO = 0.58
LINE_HEIGHT_RATIO = 1.2
ELLIPSIS = "…"

OUTPUT_IMAGE_DIR = "images"
OUTPUT_TABLE_NAME = "output.csv"
OUTPUT_ARCHIVE_NAME = "labelforge.zip"
