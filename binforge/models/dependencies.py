"""Dependency descriptors and resolved products.

Dependencies form a closed set of tagged variants (``package``, ``binary``,
``pod``). Each kind has its own list in the project file and its own
pipeline run, so a name shared across kinds never collides.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class PackageDependency(BaseModel):
    """A source package resolved and built by the platform toolchain.

    Exactly one of ``from_version``, ``exact_version`` (or ``version``),
    ``revision`` or ``branch`` describes the version requirement.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: Literal["package"] = "package"
    name: str
    url: str
    from_version: str | None = Field(default=None, alias="from")
    exact_version: str | None = None
    version: str | None = None
    revision: str | None = None
    branch: str | None = None
    additional_build_settings: dict[str, str] = Field(default_factory=dict)

    @property
    def version_requirement(self) -> dict[str, str]:
        """Version requirement as a single ``{kind: value}`` mapping."""
        if self.from_version:
            return {"from": self.from_version}
        if self.revision:
            return {"revision": self.revision}
        if self.branch:
            return {"branch": self.branch}
        exact = self.exact_version or self.version
        if exact:
            return {"exact": exact}
        raise ValueError(f"Package {self.name} has no version requirement")


class BinaryDependency(BaseModel):
    """A prebuilt binary archive fetched from a URL."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: Literal["binary"] = "binary"
    name: str
    url: str
    version: str
    checksum: str | None = None
    excludes: list[str] = Field(default_factory=list)


class PodDependency(BaseModel):
    """A CocoaPods pod installed and archived through a generated workspace."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: Literal["pod"] = "pod"
    name: str
    version: str | None = None
    from_version: str | None = Field(default=None, alias="from")
    git: str | None = None
    branch: str | None = None
    commit: str | None = None
    podspec: str | None = None
    excludes: list[str] = Field(default_factory=list)
    products: list[str] = Field(default_factory=list)
    additional_build_settings: dict[str, str] = Field(default_factory=dict)

    def podfile_line(self) -> str:
        """Render the ``pod`` declaration used in the generated Podfile."""
        line = f"pod '{self.name}'"
        if self.git:
            line += f", :git => '{self.git}'"
            if self.branch:
                line += f", :branch => '{self.branch}'"
            elif self.commit:
                line += f", :commit => '{self.commit}'"
        elif self.podspec:
            line += f", :podspec => '{self.podspec}'"
        elif self.version:
            line += f", '{self.version}'"
        elif self.from_version:
            line += f", '~> {self.from_version}'"
        return line


Dependency = Annotated[
    Union[PackageDependency, BinaryDependency, PodDependency],
    Field(discriminator="kind"),
]


class ResolvedProduct(BaseModel):
    """The result of resolving a dependency into buildable products.

    ``product_names`` is ``None`` when the dependency itself is the product
    (nothing is known about its sub-products yet). ``versions`` maps a
    product name to the version used in its cache key; products without an
    entry use ``version``.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    product_names: tuple[str, ...] | None = None
    versions: dict[str, str] = Field(default_factory=dict)
    # Kind-specific resolution data (e.g. checkout path for packages)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def version_for(self, product_name: str) -> str:
        return self.versions.get(product_name, self.version)
