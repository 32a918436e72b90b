"""Inclusion policy deciding which files the updater manages."""

from pydantic import BaseModel, Field


class InclusionPolicy(BaseModel):
    """Exclude-then-include path filter.

    Exclusion rules are checked first and short-circuit. A path that survives
    them is managed only if its first segment is an allowed project directory
    or the whole path is an allowed root-level file.
    """

    excluded_roots: list[str] = Field(
        default_factory=lambda: ["data", "config", "installer"],
        description="First path segments that are never touched",
    )
    env_prefix: str = Field(
        default=".env", description="Any path starting with this is excluded"
    )
    self_path: str = Field(
        default="public/updater.php",
        description="Updater entry point, never replaced by itself",
    )
    denylist: list[str] = Field(
        default_factory=lambda: [
            ".gitignore",
            ".gitattributes",
            ".editorconfig",
            "phpunit.xml",
            "phpunit.xml.dist",
            ".phpunit.result.cache",
            ".github/dependabot.yml",
        ],
        description="CI/build metadata files ignored even inside allowed roots",
    )
    allowed_roots: list[str] = Field(
        default_factory=lambda: [
            "public",
            "src",
            "views",
            "migrations",
            "scripts",
            "demo",
            ".github",
        ],
        description="Project directories managed by the updater",
    )
    allowed_files: list[str] = Field(
        default_factory=lambda: [
            "composer.json",
            "composer.lock",
            "README.md",
            "CHANGELOG.md",
            "LICENSE",
            "env.example",
            "current_verison.php",
            "VERSION",
        ],
        description="Root-level files managed by the updater",
    )

    @staticmethod
    def normalize(path: str) -> str:
        """Return a forward-slash relative path without a leading slash."""
        return path.replace("\\", "/").lstrip("/")

    @staticmethod
    def first_segment(path: str) -> str:
        return InclusionPolicy.normalize(path).split("/", 1)[0]

    def is_protected_dir(self, path: str) -> bool:
        """True for data/config/installer and anything below them."""
        return self.first_segment(path) in self.excluded_roots

    def should_exclude(self, path: str) -> bool:
        relative = self.normalize(path)
        if self.first_segment(relative) in self.excluded_roots:
            return True
        if relative.startswith(self.env_prefix):
            return True
        if relative == self.self_path:
            return True
        return relative in self.denylist

    def is_managed(self, path: str) -> bool:
        """Whether the updater may create, overwrite or delete this path."""
        relative = self.normalize(path)
        if not relative or self.should_exclude(relative):
            return False
        if "/" in relative and self.first_segment(relative) in self.allowed_roots:
            return True
        return relative in self.allowed_files
