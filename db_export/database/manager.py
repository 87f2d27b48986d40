import os
import re
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Optional

import tomli_w
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError

from ..errors import ProfileError
from ..extras import Struct, load_config
from ..logger import get_logger
from ..profiles import ProfileNode, ProfileTree
from ..security import SecurityManager

# type -> (SQLAlchemy driver name, driver keyword for the connect timeout)
DRIVERS: dict[str, tuple[str, str]] = {
    "postgresql": ("postgresql+psycopg", "connect_timeout"),
    "mysql": ("mysql+pymysql", "connect_timeout"),
    "sqlite": ("sqlite", "timeout"),
}

RESERVED_KEYS = ("parent", "unset", "environments", "encrypted_password")
ENVIRONMENT_SEPARATOR = "/"
MASK = "********"


@dataclass(frozen=True)
class EncryptedSecret:
    """A Fernet token stored in a profile; decrypted only when the profile is used."""

    token: str


def build_connection_url(config: Mapping[str, Any]) -> URL:
    """
    Builds a SQLAlchemy URL from resolved profile fields.

    Args:
        config: Effective profile fields (``url`` or ``type`` plus host, port,
            database, username, password and driver ``options``).

    Returns:
        The connection URL.

    Raises:
        ProfileError: If the profile does not describe a supported connection.
    """
    if config.get("url"):
        try:
            return make_url(config["url"])
        except ArgumentError as exc:
            raise ProfileError(f"Invalid connection url: {exc}") from exc

    db_type = config.get("type")
    if db_type not in DRIVERS:
        raise ProfileError(f"Connection type '{db_type}' not implemented!")

    drivername = config.get("driver") or DRIVERS[db_type][0]
    if db_type == "sqlite":
        return URL.create(drivername, database=config.get("database"))

    return URL.create(
        drivername,
        username=config.get("username"),
        password=config.get("password"),
        host=config.get("host"),
        port=config.get("port"),
        database=config.get("database"),
        query={key: str(value) for key, value in config.get("options", {}).items()},
    )


def connect_args(config: Mapping[str, Any]) -> dict[str, Any]:
    """
    Driver keyword arguments derived from the profile (currently the timeout).
    """
    timeout = config.get("timeout")
    db_type = config.get("type")
    if timeout is None or db_type not in DRIVERS:
        return {}
    return {DRIVERS[db_type][1]: timeout}


class ProfileManager:
    """
    Loads connection profiles from the configured TOML files.
    """

    configurations: Struct
    tree: ProfileTree

    def __init__(self: "ProfileManager", config_path: Optional[Path] = None):
        """
        Initializes a new ProfileManager object.

        Args:
            config_path: Explicit config.toml location.
        """
        self.logger = get_logger(__name__)
        self.configurations = load_config(config_path)
        self.security_manager = SecurityManager(self.configurations.paths.key)
        self.tree = ProfileTree.from_records(self._get_profiles())

        self.logger.info(f"Loaded {len(self.tree)} connection profiles")

    @property
    def connections_path(self: "ProfileManager") -> Path:
        return Path(self.configurations.paths.connections)

    def _get_profiles(self: "ProfileManager") -> list[ProfileNode]:
        """
        Reads every ``[profiles.<id>]`` table under the connections directory.

        Returns:
            Profile records, in file order.
        """
        records: list[ProfileNode] = []
        if not self.connections_path.is_dir():
            self.logger.warning(
                f"Connections directory {self.connections_path} does not exist"
            )
            return records

        for connection_path in sorted(self.connections_path.glob("*.toml")):
            try:
                with open(connection_path, "rb") as f:
                    data = tomllib.load(f)
            except tomllib.TOMLDecodeError as exc:
                raise ProfileError(
                    f"Invalid profile file: {exc}", target=connection_path
                ) from exc

            for profile_id, table in data.get("profiles", {}).items():
                records.extend(self._records_from_table(profile_id, table))

        return records

    def _records_from_table(
        self: "ProfileManager",
        profile_id: str,
        table: Any,
        parent_id: Optional[str] = None,
    ) -> Iterator[ProfileNode]:
        """
        Turns one profile table into records; nested environments become children.
        """
        if not isinstance(table, dict):
            raise ProfileError("Profile entry must be a table", profile=profile_id)

        fields = {key: value for key, value in table.items() if key not in RESERVED_KEYS}
        if "encrypted_password" in table:
            fields["password"] = EncryptedSecret(table["encrypted_password"])

        yield ProfileNode(
            profile_id,
            table.get("parent", parent_id),
            fields,
            frozenset(table.get("unset", [])),
        )

        for environment, environment_table in table.get("environments", {}).items():
            yield from self._records_from_table(
                f"{profile_id}{ENVIRONMENT_SEPARATOR}{environment}",
                environment_table,
                parent_id=profile_id,
            )

    def profile_id_for(
        self: "ProfileManager", profile_id: str, environment: Optional[str] = None
    ) -> str:
        """
        Picks the environment child of a profile when it has one.
        """
        if environment:
            candidate = f"{profile_id}{ENVIRONMENT_SEPARATOR}{environment}"
            if candidate in self.tree:
                return candidate
            self.logger.info(
                f"Profile '{profile_id}' has no '{environment}' environment, using it as is"
            )
        return profile_id

    def resolve(
        self: "ProfileManager", profile_id: str, environment: Optional[str] = None
    ) -> Struct:
        """
        Resolves a profile and its secrets into connection parameters.

        Returns:
            The effective fields with passwords decrypted and ``${VAR}`` values
            read from the environment.
        """
        resolved_id = self.profile_id_for(profile_id, environment)
        effective = self.tree.resolve(resolved_id)
        return Struct(self._resolve_secrets(effective, resolved_id))

    def describe(self: "ProfileManager", profile_id: str) -> dict[str, Any]:
        """
        Effective fields of a profile with secrets masked, for display.
        """
        effective = self.tree.resolve(profile_id)
        if "password" in effective:
            effective["password"] = MASK
        return effective

    def _resolve_secrets(self: "ProfileManager", info: Any, profile_id: str):
        """
        Recursively resolves secrets using env vars and the Fernet key.

        Args:
            info: Profile fields, or a nested value.
            profile_id: Profile being resolved, for error context.
        """
        if isinstance(info, dict):
            return {k: self._resolve_secrets(v, profile_id) for k, v in info.items()}
        elif isinstance(info, EncryptedSecret):
            return self.security_manager.decrypt_password(info.token)
        elif isinstance(info, str) and info.startswith("${") and info.endswith("}"):
            env_var = info[2:-1]
            try:
                return os.environ[env_var]
            except KeyError:
                raise ProfileError(
                    f"Environment variable '{env_var}' is not set", profile=profile_id
                ) from None
        return info

    def add_profile(
        self: "ProfileManager",
        profile_id: str,
        parent_id: Optional[str] = None,
        fields: Optional[Mapping[str, Any]] = None,
        unset_fields: Iterable[str] = (),
        password: Optional[str] = None,
    ) -> Path:
        """
        Validates a new profile against the tree and writes it to its own file.

        Args:
            profile_id: Identifier of the new profile.
            parent_id: Profile to inherit from.
            fields: Fields set by the profile.
            unset_fields: Fields the profile clears.
            password: Plain password, stored encrypted.

        Returns:
            The file the profile was written to.
        """
        if ENVIRONMENT_SEPARATOR in profile_id:
            raise ProfileError(
                f"'{ENVIRONMENT_SEPARATOR}' is reserved for environments",
                profile=profile_id,
            )

        table: dict[str, Any] = dict(fields or {})
        tree_fields = dict(table)
        if password:
            table["encrypted_password"] = self.security_manager.encrypt_password(password)
            tree_fields["password"] = EncryptedSecret(table["encrypted_password"])

        file_name = re.sub(r"[^\w.-]", "_", profile_id)
        file_path = self.connections_path / f"{file_name}.toml"
        if file_path.exists():
            raise ProfileError(f"{file_path} already exists", profile=profile_id)

        self.tree.insert(profile_id, parent_id, tree_fields, unset_fields)

        if parent_id:
            table["parent"] = parent_id
        if unset_fields:
            table["unset"] = sorted(unset_fields)

        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, "wb") as f:
            tomli_w.dump({"profiles": {profile_id: table}}, f)

        self.logger.info(f"Saved profile '{profile_id}' to {file_path}")

        return file_path
