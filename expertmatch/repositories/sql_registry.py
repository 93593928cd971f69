"""
SQL Registry

Loads every `*.sql` file under `repositories/sql/` once at startup. A
statement's name is its path relative to that directory without the
extension, e.g. `consultationmatch/insert`.
"""
from pathlib import Path
from typing import Dict, Iterable, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.sql.elements import TextClause

from expertmatch.utils import get_logger
from expertmatch.utils.exceptions import QueryStructureError

logger = get_logger(__name__)

SQL_DIR = Path(__file__).resolve().parent / "sql"


class SqlRegistry:
    """Named SQL statements. Read-only after construction."""

    def __init__(self, statements: Dict[str, str]):
        self._statements = dict(statements)

    @classmethod
    def load(cls, root: Optional[Path] = None) -> "SqlRegistry":
        root = root or SQL_DIR
        statements = {}
        for path in sorted(root.rglob("*.sql")):
            name = path.relative_to(root).with_suffix("").as_posix()
            sql = path.read_text(encoding="utf-8").replace("\r\n", "\n").replace("\r", "\n").strip()
            if not sql:
                raise QueryStructureError(f"SQL file is empty: {path}", provider="sql")
            statements[name] = sql
        logger.info(f"Loaded {len(statements)} SQL statements from {root}")
        return cls(statements)

    def __contains__(self, name: str) -> bool:
        return name in self._statements

    def sql(self, name: str) -> str:
        try:
            return self._statements[name]
        except KeyError:
            raise QueryStructureError(f"SQL statement not found: {name}", provider="sql") from None

    def statement(self, name: str, expanding: Iterable[str] = ()) -> TextClause:
        """The named statement as a TextClause; `expanding` names IN-list parameters."""
        clause = text(self.sql(name))
        expanding = tuple(expanding)
        if expanding:
            clause = clause.bindparams(*(bindparam(p, expanding=True) for p in expanding))
        return clause

    def require(self, *names: str) -> None:
        """Fail fast when a repository is wired to a registry missing its statements."""
        missing = [n for n in names if n not in self._statements]
        if missing:
            raise QueryStructureError(f"Missing SQL statements: {', '.join(missing)}", provider="sql")
