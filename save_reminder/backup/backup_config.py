"""Backup layout constants."""

# Name of the save entity inside the saves directory
QUICKSAVE_NAME = "000000 - quicksave"

# Backups live in this folder inside the saves directory
BACKUP_FOLDER_NAME = "backups"

# Timestamp format used for backup directory names (one-second resolution)
BACKUP_DIR_FORMAT = "%Y-%m-%d_%H-%M-%S"

# Suffix of the temporary file a copy is written to before it is renamed
PARTIAL_SUFFIX = ".partial"

BACKUP_DIR_MODE = 0o755
BACKUP_FILE_MODE = 0o644

# SQLite file holding the backup record index
INDEX_DB_NAME = "index.db"
