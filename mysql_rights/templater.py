from __future__ import annotations

"""Render the shell commands that probe and apply MySQL grants.

Every value coming from a :class:`GrantIntent` is escaped twice: first as a
MySQL identifier or string literal, then the whole SQL statement is passed
through :func:`shlex.quote` so it reaches ``mysql -e`` as a single word.
Nothing in the intent can add a pipe, a command separator or a command
substitution to the rendered text.

The admin password never appears on the command line; it is exported to the
client through ``MYSQL_PWD``.
"""

import shlex
from typing import Dict, List, Tuple

from .data_models import ClientOptions, GrantIntent, RenderedCommand
from .errors import InvalidIntent

GREP = "grep"
SYSTEM_SCHEMA = "mysql"


def quote_identifier(name: str) -> str:
    """Return *name* as a backtick-quoted MySQL identifier."""
    return "`" + name.replace("`", "``") + "`"


def quote_literal(value: str) -> str:
    """Return *value* as a single-quoted MySQL string literal."""
    return "'" + value.replace("\\", "\\\\").replace("'", "''") + "'"


def account(intent: GrantIntent) -> str:
    return f"{quote_literal(intent.user)}@{quote_literal(intent.host)}"


def privilege_list(intent: GrantIntent) -> str:
    return ", ".join(sorted(intent.privileges))


def privilege_pattern(privilege: str) -> str:
    """Extended regex matching *privilege* in a ``SHOW GRANTS`` line.

    ``ALL PRIVILEGES`` on the database covers every other privilege.
    """
    names = privilege if privilege == "ALL PRIVILEGES" else f"{privilege}|ALL PRIVILEGES"
    return f"(GRANT |, )({names})(,| ON )"


class CommandTemplater:
    """Build probe/apply commands for a :class:`GrantIntent`."""

    def __init__(self, client: ClientOptions | None = None):
        self.client = client or ClientOptions()

    # ------------------------------------------------------------------
    def _client_words(self, binary: str, intent: GrantIntent) -> List[str]:
        # --defaults-file must come first for the MySQL clients to honour it
        words = [binary]
        if self.client.defaults_file:
            words.append(f"--defaults-file={self.client.defaults_file}")
        host = intent.db_host or self.client.db_host
        user = intent.db_user or self.client.db_user
        if host:
            words.append(f"--host={host}")
        if user:
            words.append(f"--user={user}")
        return words

    def _client_env(self, intent: GrantIntent) -> Tuple[Dict[str, str], Tuple[str, ...]]:
        password = intent.db_password or self.client.db_password
        if password:
            return {"MYSQL_PWD": password}, (password,)
        return {}, ()

    def _mysql(self, intent: GrantIntent, *extra: str) -> str:
        words = self._client_words(self.client.mysql_bin, intent)
        words.extend(extra)
        return " ".join(shlex.quote(w) for w in words)

    def _mysqladmin(self, intent: GrantIntent, *extra: str) -> str:
        words = self._client_words(self.client.mysqladmin_bin, intent)
        words.extend(extra)
        return " ".join(shlex.quote(w) for w in words)

    @staticmethod
    def _check(intent: GrantIntent) -> None:
        if not intent.database or not intent.user:
            raise InvalidIntent("database and user are required")

    # ------------------------------------------------------------------
    def grant_statement(self, intent: GrantIntent) -> str:
        stmt = (
            f"GRANT {privilege_list(intent)} ON {quote_identifier(intent.database)}.* "
            f"TO {account(intent)}"
        )
        if self.client.identified_by and intent.password:
            stmt += f" IDENTIFIED BY {quote_literal(intent.password)}"
        if intent.grant_option:
            stmt += " WITH GRANT OPTION"
        return stmt

    def revoke_statement(self, intent: GrantIntent) -> str:
        return (
            f"REVOKE ALL PRIVILEGES, GRANT OPTION ON {quote_identifier(intent.database)}.* "
            f"FROM {account(intent)}"
        )

    @staticmethod
    def show_grants_statement(intent: GrantIntent) -> str:
        return f"show grants for {account(intent)}"

    # ------------------------------------------------------------------
    def render_probe(self, intent: GrantIntent) -> RenderedCommand:
        """Render the read-only "unless" command.

        The command prints the matching ``SHOW GRANTS`` line when the grant is
        in place and nothing otherwise. For ``ensure: absent`` any grant on
        the database counts. A line holding ``ALL PRIVILEGES`` satisfies any
        requested privilege.
        """

        self._check(intent)
        env, secrets = self._client_env(intent)
        stages = [
            self._mysql(intent, SYSTEM_SCHEMA, "-e", self.show_grants_statement(intent)),
            " ".join([GREP, "-F", "--", shlex.quote(f"ON {quote_identifier(intent.database)}.*")]),
        ]
        if intent.ensure == "present":
            for priv in sorted(intent.privileges):
                stages.append(" ".join([GREP, "-E", "--", shlex.quote(privilege_pattern(priv))]))
            if intent.grant_option:
                stages.append(" ".join([GREP, "-F", "--", shlex.quote("WITH GRANT OPTION")]))
        return RenderedCommand(
            text=" | ".join(stages),
            programs=(self.client.mysql_bin, GREP),
            env=env,
            secrets=secrets,
        )

    def _render_change(self, intent: GrantIntent, statement: str) -> RenderedCommand:
        env, secrets = self._client_env(intent)
        if intent.password:
            secrets = secrets + (intent.password,)
        text = (
            f"{self._mysql(intent, SYSTEM_SCHEMA, '-e', statement)}"
            f" && {self._mysqladmin(intent, 'flush-privileges')}"
        )
        return RenderedCommand(
            text=text,
            programs=(self.client.mysql_bin, self.client.mysqladmin_bin),
            env=env,
            secrets=secrets,
        )

    def render_apply(self, intent: GrantIntent) -> RenderedCommand:
        """Render the command converging *intent*: GRANT, or REVOKE when absent."""

        self._check(intent)
        if intent.ensure == "absent":
            return self.render_revoke(intent)
        return self._render_change(intent, self.grant_statement(intent))

    def render_revoke(self, intent: GrantIntent) -> RenderedCommand:
        self._check(intent)
        return self._render_change(intent, self.revoke_statement(intent))

    def render_user_probe(self, intent: GrantIntent) -> RenderedCommand:
        """Render a query printing ``1`` when ``user@host`` exists, ``0`` otherwise."""

        self._check(intent)
        env, secrets = self._client_env(intent)
        query = (
            "SELECT COUNT(*) FROM mysql.user WHERE "
            f"User = {quote_literal(intent.user)} AND Host = {quote_literal(intent.host)}"
        )
        return RenderedCommand(
            text=self._mysql(intent, "--skip-column-names", SYSTEM_SCHEMA, "-e", query),
            programs=(self.client.mysql_bin,),
            env=env,
            secrets=secrets,
        )
