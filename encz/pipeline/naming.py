import re
from pathlib import Path
from typing import Optional, Tuple

_RESOLUTION_TAG_RE = re.compile(r"\[\d+[pk]\]")


def target_dimensions(source_width: int, source_height: int,
                      requested_width: int = 0, requested_height: int = 0) -> Tuple[int, int]:
    """Output frame size after scaling, keeping the source aspect ratio when only one side is requested."""
    if requested_width > 0 and requested_height > 0:
        return requested_width, requested_height
    if requested_width > 0:
        if source_width <= 0:
            return requested_width, source_height
        return requested_width, int(requested_width * source_height / source_width)
    if requested_height > 0:
        if source_height <= 0:
            return source_width, requested_height
        return int(requested_height * source_width / source_height), requested_height
    return source_width, source_height


def resolution_label(width: int, height: int) -> Optional[str]:
    longest = max(width, height)
    if longest >= 3000:
        return "4K"
    if 1900 <= longest <= 2000:
        return "1080p"
    if 1200 <= longest <= 1400:
        return "720p"
    return None


def generate_filename(file_path: Path, source_width: int, source_height: int,
                      requested_width: int = 0, requested_height: int = 0) -> str:
    """Builds 'Movie [1080p, x265].mkv' style names, replacing any existing '[720p]' tag."""
    width, height = target_dimensions(source_width, source_height, requested_width, requested_height)
    label = resolution_label(width, height)

    stem = _RESOLUTION_TAG_RE.sub("", file_path.stem).strip()
    if label:
        stem = f"{stem} [{label}, x265]"
    else:
        stem = f"{stem} [x265]"
    return f"{stem}{file_path.suffix}"


def resolve_output_path(input_path: Path, output_dir: Path, source_width: int, source_height: int,
                        requested_width: int = 0, requested_height: int = 0) -> Path:
    """Output path for an encode; never the input file itself."""
    output_path = output_dir / generate_filename(
        input_path, source_width, source_height, requested_width, requested_height
    )
    if output_path == input_path:
        output_path = input_path.with_name(f"{input_path.stem}.reencoded{input_path.suffix}")
    return output_path
