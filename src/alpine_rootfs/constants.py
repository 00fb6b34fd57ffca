"""Fixed host paths, package sets and defaults."""

from pathlib import Path

# Alpine mirror and the static package tool
DEFAULT_MIRROR_URL = "http://dl-cdn.alpinelinux.org/alpine"
DEFAULT_APK_TOOLS_URL = (
    "https://gitlab.alpinelinux.org/api/v4/projects/5/packages/generic/v2.14.0/x86_64/apk.static"
    "#!sha256!1c65115a425d049590bec7c729c7fd88357fbb090a6fc8c31d834d7b0bc7d6f2"
)
DEFAULT_BRANCH = "latest-stable"
DEFAULT_ARCH = "x86_64"
DEFAULT_SHELL_NAME = "alpine.sh"
DEFAULT_PACKAGES = ["build-base", "ca-certificates", "ssl_client"]
DEFAULT_UID = 1000

SUPPORTED_ARCHES = (
    "x86_64",
    "x86",
    "aarch64",
    "armhf",
    "armv7",
    "ppc64le",
    "riscv64",
    "s390x",
)

ALPINE_BASE_PKGS = [
    "alpine-baselayout",
    "apk-tools",
    "busybox",
    "busybox-suid",
    "musl-utils",
]
RELEASE_PKG = "alpine-release"
# Branches older than this ship no alpine-release package.
RELEASE_PKG_MIN_VERSION = (3, 17)
RELEASE_FALLBACK_PKG = "alpine-base"

# Bundled Alpine signing keys
KEYS_DIR = Path(__file__).parent / "keys"

# Host side
EMULATOR_INSTALL_DIR = Path("/usr/local/bin")
BINFMT_MISC_DIR = Path("/proc/sys/fs/binfmt_misc")
HOST_RESOLV_CONF = Path("/etc/resolv.conf")
HOST_SHM = Path("/dev/shm")
HOST_RUN_SHM = Path("/run/shm")
MOUNTINFO_PATH = Path("/proc/self/mountinfo")

# Guest side, relative to the rootfs
GUEST_SNAPSHOT_PATH = "tmp/.env.sh"
GUEST_SETUP_SCRIPT = ".setup.sh"
GUEST_BIN_DIR = "abin"

# Timeouts (seconds)
CONNECT_TIMEOUT = 10
EVICTION_GRACE_PERIOD = 1.0
EVICTION_ESCALATION_WAIT = 5.0

CHUNK_SIZE = 8192
