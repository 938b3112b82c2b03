# SPDX-License-Identifier: LicenseRef-TVArgenta-NC-Attribution-Consult-First
# Proyecto: MovieLocal — Servidor de medios
# Autor: Ricardo Sappia contact:rsflightronics@gmail.com
# © 2025 Ricardo Sappia. Todos los derechos reservados.
# Licencia: No comercial, atribución y consulta previa. Se distribuye TAL CUAL, sin garantías.
# Ver LICENSE para términos completos.


from pathlib import Path
import os


def _env_path(name, default):
    value = os.environ.get(name)
    return Path(value).resolve() if value else default


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


ENV_ROOT = os.environ.get("MOVIELOCAL_ROOT")
if ENV_ROOT:
    ROOT_DIR = Path(ENV_ROOT).resolve()
else:
    ROOT_DIR = Path(__file__).resolve().parents[0]

# Bibliotecas: cada carpeta de MOVIES_DIR es una película,
# cada carpeta de SERIES_DIR es una serie con subcarpetas "Season N"
MOVIES_DIR = _env_path("MOVIELOCAL_MOVIES_DIR", ROOT_DIR / "Movies")
SERIES_DIR = _env_path("MOVIELOCAL_SERIES_DIR", ROOT_DIR / "Series")
# Carpetas que los canales pueden reproducir (además de Movies/Series)
CHANNELS_DIR = _env_path("MOVIELOCAL_CHANNELS_DIR", ROOT_DIR / "Channels")
DATA_DIR   = _env_path("MOVIELOCAL_DATA_DIR", ROOT_DIR / "data")
LOG_DIR    = _env_path("MOVIELOCAL_LOG_DIR", ROOT_DIR / "logs")

# Archivos JSON (key-value stores)
CHANNELS_FILE = DATA_DIR / "channels.json"
PROGRESS_FILE = DATA_DIR / "progress.json"
CLIENTS_FILE  = DATA_DIR / "connected_clients.json"
METADATA_FILE = DATA_DIR / "metadata.json"

# Red
HOST = os.environ.get("MOVIELOCAL_HOST", "0.0.0.0")
PORT = int(os.environ.get("MOVIELOCAL_PORT", "8080"))
# Address embedded in stream/thumbnail URLs. Empty means autodetect.
SERVER_IP = os.environ.get("MOVIELOCAL_SERVER_IP", "")

API_VERSION = "1.0"

# Channel playback clock
TICK_INTERVAL_SEC = 1.0

# Connected clients older than this are considered gone (5 minutes)
CLIENT_STALE_SEC = 5 * 60

# Streaming
STRICT_STREAM_PATHS = _env_bool("MOVIELOCAL_STRICT_PATHS", True)

FFPROBE_TIMEOUT_SEC = 30

# Recognized media extensions
VIDEO_EXTENSIONS = ("mp4", "mkv", "avi", "webm", "mov", "flv", "wmv", "m4v")
IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "webp")

# Filler catalog values used when no enrichment data exists
DEFAULT_DESCRIPTION = ""
DEFAULT_YEAR = 2024
DEFAULT_GENRE = "Unknown"
DEFAULT_RATING = 0.0
DEFAULT_MOVIE_DURATION_MIN = 120
DEFAULT_EPISODE_DURATION_MIN = 45
