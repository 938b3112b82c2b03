# SPDX-License-Identifier: LicenseRef-TVArgenta-NC-Attribution-Consult-First
# Proyecto: MovieLocal — Servidor de medios
# Autor: Ricardo Sappia contact:rsflightronics@gmail.com
# © 2025 Ricardo Sappia. Todos los derechos reservados.
# Licencia: No comercial, atribución y consulta previa. Se distribuye TAL CUAL, sin garantías.
# Ver LICENSE para términos completos.

"""Error types shared by the media server components."""


class MovieServerError(Exception):
    """Base class for media server failures."""


class StreamNotFound(MovieServerError):
    """Requested stream/thumbnail path is missing, not a regular file, or outside the media roots."""

    def __init__(self, path):
        super().__init__(f"not found: {path}")
        self.path = path


class StreamIOError(MovieServerError):
    """Read failure while opening or transferring a file."""


class ServerBindError(MovieServerError):
    """The listening socket could not be bound."""

    def __init__(self, host, port, reason=""):
        super().__init__(f"cannot bind {host}:{port} {reason}".strip())
        self.host = host
        self.port = port


class PortInUseError(ServerBindError):
    """The configured port is already bound by another socket."""


class ChannelResolutionEmpty(MovieServerError):
    """A channel's folders contain no playable video."""

    def __init__(self, channel_id):
        super().__init__(f"channel {channel_id} has no playable videos")
        self.channel_id = channel_id


class ScanSkip(MovieServerError):
    """A single catalog entry is malformed or incomplete and is left out of the scan."""
