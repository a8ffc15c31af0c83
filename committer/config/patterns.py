"""
Static pattern tables for diff exclusion and branch protection.
"""

from typing import Dict, FrozenSet


# Category -> patterns. A trailing "/" marks a directory, a leading "." marks
# a suffix, anything else is an exact file name.
EXCLUDED_FROM_DIFF: Dict[str, FrozenSet[str]] = {
    "lock_files": frozenset({
        "Cargo.lock",
        "package-lock.json",
        "yarn.lock",
        "pnpm-lock.yaml",
        "composer.lock",
        "Gemfile.lock",
        "poetry.lock",
        "bun.lockb",
        "uv.lock",
    }),
    "minified": frozenset({
        ".min.js",
        ".min.css",
    }),
    "generated": frozenset({
        ".map",
    }),
    "build_dirs": frozenset({
        "target/",
        "node_modules/",
        "dist/",
        "build/",
        ".next/",
        "__pycache__/",
    }),
    "platform_cache": frozenset({
        ".DS_Store",
        "Thumbs.db",
        "desktop.ini",
    }),
}

PROTECTED_BRANCHES: FrozenSet[str] = frozenset({
    "main",
    "master",
    "develop",
    "dev",
    "staging",
    "production",
})
