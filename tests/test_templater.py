import pathlib
import shlex
import sys

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from mysql_rights.data_models import ClientOptions, GrantIntent
from mysql_rights.errors import InvalidIntent
from mysql_rights.executor import DEFAULT_ALLOWED_PATHS, Executor, command_programs
from mysql_rights.templater import CommandTemplater, quote_identifier, quote_literal

ADVERSARIAL_DB = "x';touch pwned;`touch pwned`$(touch pwned)\"$HOME"
ADVERSARIAL_USER = "u'; DROP USER root; --"
ADVERSARIAL_PASSWORD = "p'`$(id)`;\"$PATH"


def placeholder_intent(**kwargs):
    data = dict(
        database="place_value_here",
        user="place_value_here",
        password="place_value_here",
    )
    data.update(kwargs)
    return GrantIntent(**data)


def test_quote_identifier_doubles_backticks():
    assert quote_identifier("app") == "`app`"
    assert quote_identifier("a`b") == "`a``b`"


def test_quote_literal_escapes_quotes_and_backslashes():
    assert quote_literal("o'neil") == "'o''neil'"
    assert quote_literal("a\\b") == "'a\\\\b'"


def test_placeholder_apply_shape():
    intent = placeholder_intent()
    assert intent.host == "localhost"
    templater = CommandTemplater()

    cmd = templater.render_apply(intent)
    tokens = shlex.split(cmd.text)

    assert tokens == [
        "mysql", "--host=localhost", "mysql", "-e",
        "GRANT ALL PRIVILEGES ON `place_value_here`.* TO 'place_value_here'@'localhost'"
        " IDENTIFIED BY 'place_value_here'",
        "&&", "mysqladmin", "--host=localhost", "flush-privileges",
    ]
    assert cmd.programs == ("mysql", "mysqladmin")


def test_placeholder_probe_shape():
    intent = placeholder_intent()
    probe = CommandTemplater().render_probe(intent)

    assert "show grants for 'place_value_here'@'localhost'" in shlex.split(probe.text)
    assert shlex.split(probe.text) == [
        "mysql", "--host=localhost", "mysql", "-e",
        "show grants for 'place_value_here'@'localhost'",
        "|", "grep", "-F", "--", "ON `place_value_here`.*",
        "|", "grep", "-E", "--", "(GRANT |, )(ALL PRIVILEGES)(,| ON )",
    ]
    assert probe.programs == ("mysql", "grep")


def test_default_executor_restrictions():
    execu = Executor()
    assert execu.allowed_paths == ("/bin", "/usr/bin", "/usr/local/bin")
    assert tuple(DEFAULT_ALLOWED_PATHS) == execu.allowed_paths
    assert execu.log_output is True


def test_adversarial_values_stay_inside_one_word():
    intent = GrantIntent(
        database=ADVERSARIAL_DB, user=ADVERSARIAL_USER, password=ADVERSARIAL_PASSWORD
    )
    templater = CommandTemplater()

    apply_cmd = templater.render_apply(intent)
    tokens = shlex.split(apply_cmd.text)
    assert tokens[:4] == ["mysql", "--host=localhost", "mysql", "-e"]
    assert tokens[4] == templater.grant_statement(intent)
    assert tokens[5:] == ["&&", "mysqladmin", "--host=localhost", "flush-privileges"]
    assert command_programs(apply_cmd.text) == ["mysql", "mysqladmin"]

    probe_cmd = templater.render_probe(intent)
    assert command_programs(probe_cmd.text) == ["mysql", "grep", "grep"]
    probe_tokens = shlex.split(probe_cmd.text)
    assert probe_tokens[4] == templater.show_grants_statement(intent)
    assert probe_tokens[9] == f"ON {quote_identifier(ADVERSARIAL_DB)}.*"


def test_adversarial_values_are_sql_escaped():
    intent = GrantIntent(
        database=ADVERSARIAL_DB, user=ADVERSARIAL_USER, password=ADVERSARIAL_PASSWORD
    )
    stmt = CommandTemplater().grant_statement(intent)
    assert "ON `x';touch pwned;``touch pwned``$(touch pwned)\"$HOME`.*" in stmt
    assert "TO 'u''; DROP USER root; --'@'localhost'" in stmt
    assert stmt.endswith("IDENTIFIED BY 'p''`$(id)`;\"$PATH'")


def test_password_only_in_secrets_and_redacted():
    intent = GrantIntent(database="app", user="app", password="s3cr3t")
    client = ClientOptions(db_user="root", db_password="admin-pw")
    cmd = CommandTemplater(client).render_apply(intent)

    assert "s3cr3t" in cmd.text
    assert "admin-pw" not in cmd.text
    assert cmd.env == {"MYSQL_PWD": "admin-pw"}
    assert "s3cr3t" not in cmd.redacted()
    assert "s3cr3t" not in str(cmd)
    assert "s3cr3t" not in repr(cmd)
    assert "s3cr3t" not in repr(intent)


def test_identified_by_can_be_disabled():
    intent = GrantIntent(database="app", user="app", password="s3cr3t")
    templater = CommandTemplater(ClientOptions(identified_by=False))
    assert "IDENTIFIED BY" not in templater.grant_statement(intent)
    assert "s3cr3t" not in templater.render_apply(intent).text


def test_privileges_grant_option_and_client_options():
    intent = GrantIntent(
        database="app",
        user="report",
        password="",
        host="10.0.0.%",
        privileges=["select", "insert"],
        grant_option=True,
        db_host="db1",
    )
    client = ClientOptions(
        mysql_bin="/usr/local/bin/mysql",
        db_user="admin",
        defaults_file="/etc/mysql/admin.cnf",
    )
    templater = CommandTemplater(client)

    assert templater.grant_statement(intent) == (
        "GRANT INSERT, SELECT ON `app`.* TO 'report'@'10.0.0.%' WITH GRANT OPTION"
    )
    probe_tokens = shlex.split(templater.render_probe(intent).text)
    assert probe_tokens[:4] == [
        "/usr/local/bin/mysql",
        "--defaults-file=/etc/mysql/admin.cnf",
        "--host=db1",
        "--user=admin",
    ]
    assert "(GRANT |, )(INSERT|ALL PRIVILEGES)(,| ON )" in probe_tokens
    assert "(GRANT |, )(SELECT|ALL PRIVILEGES)(,| ON )" in probe_tokens
    assert probe_tokens[-1] == "WITH GRANT OPTION"


def test_absent_renders_revoke_and_loose_probe():
    intent = GrantIntent(database="app", user="app", password="", ensure="absent")
    templater = CommandTemplater()

    apply_tokens = shlex.split(templater.render_apply(intent).text)
    assert apply_tokens[4] == "REVOKE ALL PRIVILEGES, GRANT OPTION ON `app`.* FROM 'app'@'localhost'"
    assert command_programs(templater.render_probe(intent).text) == ["mysql", "grep"]


def test_user_probe_query():
    intent = GrantIntent(database="app", user="o'neil", password="")
    cmd = CommandTemplater().render_user_probe(intent)
    tokens = shlex.split(cmd.text)
    assert "--skip-column-names" in tokens
    assert tokens[-1] == (
        "SELECT COUNT(*) FROM mysql.user WHERE User = 'o''neil' AND Host = 'localhost'"
    )
    assert cmd.programs == ("mysql",)


@pytest.mark.parametrize("field", ["database", "user"])
def test_empty_database_or_user_is_invalid(field):
    data = {"database": "app", "user": "app", "password": ""}
    data[field] = ""
    with pytest.raises(InvalidIntent):
        GrantIntent(**data)


@pytest.mark.parametrize("privileges", [["usage"], ["select", "usage"]])
def test_usage_privilege_is_rejected(privileges):
    with pytest.raises(InvalidIntent, match="Unsupported privilege"):
        GrantIntent(database="app", user="app", password="", privileges=privileges)
