import pytest

from sqlpane.errors import QueryError
from sqlpane.guardrails import (
    clamp_limit,
    detect_statement_type,
    is_wrappable,
    quote_identifier,
    strip_statement,
)


def test_detect_statement_type() -> None:
    assert detect_statement_type("  select * from users") == "SELECT"
    assert detect_statement_type("-- latest first\nWITH x AS (SELECT 1) SELECT * FROM x") == "WITH"
    assert detect_statement_type("/* bulk */ update users set name = 'x'") == "UPDATE"
    with pytest.raises(QueryError) as exc_info:
        detect_statement_type("   ")
    assert exc_info.value.kind == "syntax"


def test_is_wrappable() -> None:
    assert is_wrappable("SELECT 1")
    assert is_wrappable("with t as (select 1) select * from t")
    assert not is_wrappable("SHOW TABLES")
    assert not is_wrappable("DELETE FROM users")


def test_strip_statement() -> None:
    assert strip_statement("  SELECT 1;;  ") == "SELECT 1"


def test_quote_identifier() -> None:
    assert quote_identifier("users", '"') == '"users"'
    assert quote_identifier('we"ird', '"') == '"we""ird"'
    assert quote_identifier("odd`name", "`") == "`odd``name`"


def test_clamp_limit() -> None:
    assert clamp_limit(5, 10) == 5
    assert clamp_limit(15, 10) == 10
    assert clamp_limit(None, 10) == 10
    assert clamp_limit(0, 10) == 10
