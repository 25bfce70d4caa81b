"""
File schemas for externally supplied delimited files.

A schema lists the columns a file type may carry, the aliases a customer
may use for them in a header row, and whether each one is required,
optional or omitted. Header cells are matched case-insensitively with
whitespace and underscores ignored, so "Policy Number", "policynumber"
and "POLICY_NUMBER" all resolve to the same column.
"""

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from core.exceptions import ConfigurationError, SchemaCompositionError
from extraction.columns import ColumnDefinition
from schemas.definitions import FileColumnSpec, FileDefinitionSpec
import logging

logger = logging.getLogger(__name__)

HEADING_NOISE = re.compile(r"[_\s]")


def normalize_heading(text: str) -> str:
    """Strip whitespace and underscores and fold case for header matching."""
    return HEADING_NOISE.sub("", text or "").casefold()


class ColumnRequirement(str, Enum):
    """Whether a column must, may, or must not appear in a file"""
    REQUIRED = "REQUIRED"
    OPTIONAL = "NOTREQUIRED"
    OMITTED = "OMITTED"


@dataclass(frozen=True)
class FileColumn:
    """
    One configured column of a file type.

    Aliases are stored normalized; the canonical name is kept as written
    because it is the key rows are projected onto.
    """
    definition: ColumnDefinition
    aliases: FrozenSet[str] = field(default_factory=frozenset)
    requirement: ColumnRequirement = ColumnRequirement.OPTIONAL

    @classmethod
    def create(
        cls,
        definition: ColumnDefinition,
        aliases: Iterable[str] = (),
        requirement: ColumnRequirement = ColumnRequirement.OPTIONAL
    ) -> "FileColumn":
        normalized = frozenset(normalize_heading(a) for a in aliases if normalize_heading(a))
        return cls(definition, normalized, requirement)

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def required(self) -> bool:
        return self.requirement is ColumnRequirement.REQUIRED

    @property
    def omitted(self) -> bool:
        return self.requirement is ColumnRequirement.OMITTED

    def matches(self, heading: str) -> bool:
        """True if a header cell names this column directly or by alias."""
        normalized = normalize_heading(heading)
        return normalized == normalize_heading(self.name) or normalized in self.aliases

    def read(self, raw: Optional[str]) -> Any:
        """Parse a raw cell, enforcing the required check first."""
        if self.required:
            return self.definition.parse_required(raw)
        return self.definition.parse(raw)

    def apply_to(self, base: "FileColumn", table_name: str = "") -> "FileColumn":
        """
        Override a base column with this customer column's settings.

        Raises:
            SchemaCompositionError: If a required base column would be weakened
        """
        definition = base.definition
        if self.definition.format_pattern and definition.is_temporal:
            definition = definition.with_format(self.definition.format_pattern)

        if base.required and not self.required:
            raise SchemaCompositionError(
                "A required column cannot be changed to not required or omitted status",
                context={
                    "table_name": table_name,
                    "column_name": base.name,
                    "requirement": self.requirement.value
                }
            )

        aliases = self.aliases if self.aliases else base.aliases
        return replace(base, definition=definition, aliases=aliases, requirement=self.requirement)


@dataclass
class HeaderResolution:
    """Outcome of matching one header row against a schema."""
    column_names: List[str] = field(default_factory=list)
    unmatched: List[Tuple[str, int]] = field(default_factory=list)
    duplicates: List[Tuple[str, int]] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.unmatched and not self.duplicates and not self.missing

    def messages(self) -> List[str]:
        """Diagnostics for a failed resolution, one per problem kind."""
        result = []
        if self.unmatched:
            headings = ",".join(f"{heading} at column position {pos}" for heading, pos in self.unmatched)
            result.append(
                "The file contains columns that are not recognized: "
                f"Unmatched Columns found with the following column headings : {headings}"
            )
        if self.duplicates:
            headings = ",".join(f"{heading} at column position {pos}" for heading, pos in self.duplicates)
            result.append(f"The file maps more than one heading to the same column : {headings}")
        if self.missing:
            names = ", ".join(f"[{name}]" for name in self.missing)
            result.append(f"The file is missing required columns : {names}")
        return result


class FileSchema:
    """
    Ordered column configuration for one external file type.

    Attributes:
        table_name: Destination table on the collection server
        columns: Configured columns in declaration order
    """

    def __init__(self, table_name: str, columns: Iterable[FileColumn]):
        self.table_name = table_name
        self.columns: List[FileColumn] = list(columns)
        self._by_name: Dict[str, FileColumn] = {}
        for column in self.columns:
            if column.name in self._by_name:
                raise ConfigurationError(
                    f"Duplicate column {column.name} in file definition {table_name}",
                    context={"table_name": table_name, "column_name": column.name}
                )
            self._by_name[column.name] = column

    def __repr__(self) -> str:
        return f"FileSchema(table_name={self.table_name!r}, columns={[c.name for c in self.columns]})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FileSchema):
            return NotImplemented
        return self.table_name == other.table_name and self.columns == other.columns

    def column(self, name: str) -> Optional[FileColumn]:
        return self._by_name.get(name)

    @property
    def definitions(self) -> List[ColumnDefinition]:
        """Column definitions rows are rendered with; omitted columns are left out."""
        return [c.definition for c in self.columns if not c.omitted]

    # ------------------------------------------------------------------
    # Header validation and row projection
    # ------------------------------------------------------------------

    def resolve_header(self, header: List[str]) -> HeaderResolution:
        """
        Resolve each header cell to a canonical column name.

        Unmatched cells and missing required columns are collected
        independently; the resolution is valid only when both are empty.
        """
        resolution = HeaderResolution()
        candidates = [c for c in self.columns if not c.omitted]
        seen = set()

        for position, heading in enumerate(header):
            matches = [c for c in candidates if c.matches(heading)]
            if len(matches) != 1:
                resolution.unmatched.append((heading, position))
                continue
            name = matches[0].name
            if name in seen:
                resolution.duplicates.append((heading, position))
                continue
            seen.add(name)
            resolution.column_names.append(name)

        resolution.missing = [c.name for c in self.columns if c.required and c.name not in seen]
        return resolution

    @staticmethod
    def project(resolution: HeaderResolution, row: List[str]) -> Dict[str, str]:
        """Map a shape-checked row onto canonical column names."""
        return dict(zip(resolution.column_names, row))

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    @classmethod
    def compose(cls, base: "FileSchema", customer: "FileSchema") -> "FileSchema":
        """
        Apply a customer's schema overrides to a base schema.

        Args:
            base: Schema shipped for the file type
            customer: Customer overrides (aliases, status, date formats)

        Returns:
            A new merged schema; neither input is modified

        Raises:
            SchemaCompositionError: If the customer names an unknown column or
                weakens a required one
        """
        merged = {c.name: c for c in base.columns}
        for override in customer.columns:
            current = merged.get(override.name)
            if current is None:
                raise SchemaCompositionError(
                    f"Column {override.name} is not available",
                    context={"table_name": base.table_name, "column_name": override.name}
                )
            merged[override.name] = override.apply_to(current, base.table_name)

        logger.debug(f"Composed file schema for {base.table_name} with {len(customer.columns)} overrides")
        return cls(base.table_name, [merged[c.name] for c in base.columns])

    def remove_omitted_columns(self) -> "FileSchema":
        return FileSchema(self.table_name, [c for c in self.columns if not c.omitted])

    # ------------------------------------------------------------------
    # Configuration round trip
    # ------------------------------------------------------------------

    @classmethod
    def from_spec(cls, spec: FileDefinitionSpec) -> "FileSchema":
        """Build a schema from a FileDefinitionSpec."""
        columns = [
            FileColumn.create(
                ColumnDefinition.from_tag(c.type, c.name, c.format_string),
                aliases=c.aliases,
                requirement=ColumnRequirement(c.column_status)
            )
            for c in spec.column_defs
        ]
        return cls(spec.data_table_name, columns)

    def to_spec(self) -> FileDefinitionSpec:
        """Export the schema as a FileDefinitionSpec."""
        return FileDefinitionSpec(
            data_table_name=self.table_name,
            column_defs=[
                FileColumnSpec(
                    name=c.name,
                    type=c.definition.type_tag,
                    format_string=c.definition.format_pattern,
                    aliases=sorted(c.aliases),
                    column_status=c.requirement.value
                )
                for c in self.columns
            ]
        )
