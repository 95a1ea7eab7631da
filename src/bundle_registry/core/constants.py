"""Core constants for Bundle Registry.

This module defines constants used throughout the application:
- Lockfile names and schema identifiers
- Commit modes
- Managed directory layout and item types
- Version-control exclusion section header
"""

# ============================================================================
# Lockfiles
# ============================================================================

#: Lockfile committed to version control
LOCKFILE_NAME = "prompt-registry.lock.json"

#: Lockfile kept out of version control (local-only bundles)
LOCAL_LOCKFILE_NAME = "prompt-registry.local.lock.json"

#: Version written to the ``version`` field of new lockfiles
LOCKFILE_SCHEMA_VERSION = "1.0.0"

#: Value written to the ``$schema`` field of new lockfiles
LOCKFILE_SCHEMA_URL = (
    "https://github.com/AmadeusITGroup/prompt-registry/schemas/lockfile.schema.json"
)

#: Suffix of the temporary file used for atomic writes
TEMP_SUFFIX = ".tmp"

# ============================================================================
# Commit Modes
# ============================================================================

COMMIT_MODE_COMMIT = "commit"
COMMIT_MODE_LOCAL_ONLY = "local-only"

#: Valid commit mode identifiers
COMMIT_MODES: tuple[str, ...] = (COMMIT_MODE_COMMIT, COMMIT_MODE_LOCAL_ONLY)

# ============================================================================
# Managed Directory Tree
# ============================================================================

#: Directory (relative to the workspace) that bundle files are copied into
MANAGED_ROOT_DIR = ".github"

#: Subdirectories of the managed root owned by the installer. Only these are
#: ever pruned; siblings such as ``workflows`` are left alone.
MANAGED_SUBDIRS: tuple[str, ...] = ("prompts", "agents", "instructions", "skills")

#: Subdirectory holding skill directories
SKILLS_SUBDIR = "skills"

#: Target subdirectory for each item type
ITEM_TYPE_DIRS: dict[str, str] = {
    "prompt": "prompts",
    "chatmode": "prompts",
    "instructions": "instructions",
    "agent": "agents",
    "skill": "skills",
}

#: Target filename suffix for each file item type
ITEM_TYPE_SUFFIXES: dict[str, str] = {
    "prompt": ".prompt.md",
    "chatmode": ".chatmode.md",
    "instructions": ".instructions.md",
    "agent": ".agent.md",
}

#: Item type installed as a whole directory
SKILL_ITEM_TYPE = "skill"

#: Item type used when nothing else matches
DEFAULT_ITEM_TYPE = "prompt"

#: Candidate deployment manifest filenames, in lookup order
MANIFEST_FILENAMES: tuple[str, ...] = (
    "deployment-manifest.yml",
    "deployment-manifest.yaml",
    "deployment-manifest.json",
)

# ============================================================================
# Version Control
# ============================================================================

#: Header line delimiting the managed section of ``.git/info/exclude``
EXCLUDE_SECTION_HEADER = "# Prompt Registry (local)"

# ============================================================================
# Uninstall Skip Reasons
# ============================================================================

SKIP_SHARED = "used by another bundle"
SKIP_MODIFIED = "modified by user"
SKIP_UNVERIFIED = "checksum unavailable"
