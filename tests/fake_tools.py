"""
Fake external converters for tests.

Each fake is a small shell script written into a bin directory that is put in
front of PATH. Every script appends its argument vector to a per-tool log so
tests can assert on invocations.
"""

import stat
from pathlib import Path
from typing import Dict, List


# ===== FAKE TOOL SCRIPTS =====

# Writes a small file to the path following "-o" (pandoc style)
PANDOC_OK = """
out=""
prev=""
for arg in "$@"; do
  if [ "$prev" = "-o" ]; then out="$arg"; fi
  prev="$arg"
done
printf 'converted by pandoc\\n' > "$out"
"""

# Writes to the last argument (ImageMagick style)
LAST_ARG_OK = """
for last in "$@"; do :; done
printf 'converted image\\n' > "$last"
"""

# Writes <outdir>/<input stem>.<format> (LibreOffice style)
SOFFICE_OK = """
fmt=""
outdir=""
prev=""
for arg in "$@"; do
  case "$prev" in
    --convert-to) fmt="$arg" ;;
    --outdir) outdir="$arg" ;;
  esac
  prev="$arg"
  input="$arg"
done
base=$(basename "$input")
printf 'converted by soffice\\n' > "$outdir/${base%.*}.$fmt"
"""

# Same as SOFFICE_OK, but names the output <stem>_x.<format>
SOFFICE_RENAMED = SOFFICE_OK.replace("${base%.*}.$fmt", "${base%.*}_x.$fmt")

# LibreOffice style, but holds a lock on its user profile while converting.
# A second instance started on a locked profile exits 0 without converting,
# which is what a real soffice does when it hands off to a running instance.
SOFFICE_LOCKING = """
fmt=""
outdir=""
profile="$(dirname "$0")/shared-profile"
prev=""
for arg in "$@"; do
  case "$prev" in
    --convert-to) fmt="$arg" ;;
    --outdir) outdir="$arg" ;;
  esac
  case "$arg" in
    -env:UserInstallation=file://*) profile="${arg#-env:UserInstallation=file://}" ;;
  esac
  prev="$arg"
  input="$arg"
done
mkdir -p "$profile"
if ! mkdir "$profile/.lock" 2>/dev/null; then
  exit 0
fi
sleep 1
base=$(basename "$input")
printf 'converted by soffice\\n' > "$outdir/${base%.*}.$fmt"
rmdir "$profile/.lock"
"""

# Leaves a partial file behind and fails
SOFFICE_FAIL = """
outdir=""
prev=""
for arg in "$@"; do
  if [ "$prev" = "--outdir" ]; then outdir="$arg"; fi
  prev="$arg"
  input="$arg"
done
base=$(basename "$input")
printf 'partial' > "$outdir/${base%.*}.pdf"
echo "Error: source file could not be loaded" >&2
exit 1
"""

# Writes to the argument following "-j" (zip style)
ZIP_OK = """
out=""
prev=""
for arg in "$@"; do
  if [ "$prev" = "-j" ]; then out="$arg"; fi
  prev="$arg"
done
printf 'PK archive' > "$out"
"""


class FakeTools:
    """Installs fake converters into a bin directory on PATH."""

    def __init__(self, bin_dir: Path):
        self.bin_dir = bin_dir
        self.log_dir = bin_dir / "calls"
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def install(self, name: str, body: str) -> Path:
        script = self.bin_dir / name
        log_file = self.log_dir / f"{name}.log"
        script.write_text(f'#!/bin/sh\necho "$*" >> "{log_file}"\n{body}')
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    def calls(self, name: str) -> List[str]:
        log_file = self.log_dir / f"{name}.log"
        if not log_file.exists():
            return []
        return log_file.read_text().splitlines()

    def all_calls(self) -> Dict[str, List[str]]:
        return {path.stem: path.read_text().splitlines() for path in self.log_dir.glob("*.log")}

