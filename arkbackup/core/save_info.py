"""Save-info extractor — derive map and player metadata from an archive's TOC."""

from __future__ import annotations

import re
import tarfile
from pathlib import Path, PurePosixPath

from arkbackup.models.archive import SaveInfo

UNKNOWN_MAP = "Unknown"

# Internal map folder names → human-readable display names
MAP_DISPLAY_NAMES: dict[str, str] = {
    "TheIsland_WP": "The Island",
    "TheIsland": "The Island",
    "ScorchedEarth_WP": "Scorched Earth",
    "ScorchedEarth_P": "Scorched Earth",
    "Aberration_WP": "Aberration",
    "Aberration_P": "Aberration",
    "Extinction_WP": "Extinction",
    "Extinction": "Extinction",
    "Ragnarok_WP": "Ragnarok",
    "Ragnarok": "Ragnarok",
    "CrystalIsles_WP": "Crystal Isles",
    "CrystalIsles": "Crystal Isles",
    "Genesis_WP": "Genesis",
    "Genesis": "Genesis",
    "Genesis2_WP": "Genesis Part 2",
    "Genesis2": "Genesis Part 2",
}

_AUTO_SAVE_RE = re.compile(r"\d{8}_\d{6}\.ark$")
_MAIN_SAVE_NAMES = ("TheIsland.ark", "SaveGame.ark")


def extract_save_info(archive_path: Path) -> SaveInfo:
    """
    Read the archive's table of contents and summarize the save.

    Only member headers are read; nothing is extracted. Raises the
    underlying ``tarfile.TarError`` / ``OSError`` on unreadable archives.
    """
    map_name = UNKNOWN_MAP
    player_count = 0
    tribe_count = 0
    auto_save_count = 0
    total_file_count = 0
    sizes: dict[str, int] = {}

    with tarfile.open(archive_path, "r:gz") as tf:
        for member in tf:
            total_file_count += 1
            parts = PurePosixPath(member.name).parts

            # .../<MapFolder>/Saved/...
            if "Saved" in parts:
                saved_index = parts.index("Saved")
                if saved_index > 0 and parts[saved_index - 1] != ".":
                    map_name = parts[saved_index - 1]

            if not member.isfile():
                continue

            filename = parts[-1] if parts else ""
            if filename.endswith(".arkprofile"):
                player_count += 1
            elif filename.endswith(".arktribe"):
                tribe_count += 1
            elif _AUTO_SAVE_RE.search(filename):
                auto_save_count += 1
            elif filename.endswith(".ark"):
                sizes[filename] = member.size

    return SaveInfo(
        map_name=map_name,
        map_display_name=MAP_DISPLAY_NAMES.get(map_name, map_name),
        player_count=player_count,
        tribe_count=tribe_count,
        auto_save_count=auto_save_count,
        main_save_size_bytes=_main_save_size(sizes, map_name),
        total_file_count=total_file_count,
        suggested_tags=suggest_tags(map_name, player_count, tribe_count),
    )


def _main_save_size(sizes: dict[str, int], map_name: str) -> int:
    for candidate in (f"{map_name}.ark", *_MAIN_SAVE_NAMES):
        if candidate in sizes:
            return sizes[candidate]
    return 0


def suggest_tags(map_name: str, player_count: int, tribe_count: int) -> list[str]:
    """Tags a user is likely to want on a backup of this save."""
    tags: list[str] = []
    if map_name and map_name != UNKNOWN_MAP:
        tags.append(map_name)
    if player_count > 0:
        tags.append(f"players-{player_count}")
    if tribe_count > 0:
        tags.append(f"tribes-{tribe_count}")
    return tags
