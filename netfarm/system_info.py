import os
import platform
import logging

from netfarm import __version__ as netfarm_version

log = logging.getLogger(__name__)


def get_platform() -> dict:
    d = {
        "processor": platform.processor(),
        "python_version": platform.python_version(),
        "platform": platform.platform(),
        "os_release": platform.release(),
        "os_system": platform.system(),
        "netfarm_version": netfarm_version,
    }
    if d["os_system"] == "Linux":
        import distro  # pylint: disable=import-outside-toplevel
        d["distro"] = distro.info()
        d["container"] = os.path.exists('/.dockerenv')

    return d
