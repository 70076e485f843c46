"""
Connection Profile Module

Immutable description of how to reach a SQL Server-compatible database,
and the translations of that description into bcp command-line arguments
and pyodbc connection parameters.
"""

import dataclasses
import os
from dataclasses import dataclass
from typing import Dict, List

DEFAULT_PORT = 1433


def _env_flag(name: str) -> bool:
    return os.environ.get(name, '').strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class ConnectionProfile:
    """
    Connection settings for one database server.

    Exactly one of port or named instance is used: when use_named_instance
    is set the instance name addresses the server, otherwise the TCP port.
    Username and password apply only to SQL Server authentication; with
    integrated (Windows) authentication they must be left empty.
    """
    hostname: str
    port: int = DEFAULT_PORT
    instance: str = ''
    use_named_instance: bool = False
    username: str = ''
    password: str = dataclasses.field(default='', repr=False)
    use_win_auth: bool = False
    database: str = ''
    accept_invalid_tls: bool = True

    def __post_init__(self):
        if not self.hostname:
            raise ValueError("Invalid connection profile: hostname cannot be empty")

        if self.use_named_instance:
            if not self.instance:
                raise ValueError(
                    "Invalid connection profile: instance name is required "
                    "when connecting to a named instance"
                )
        elif not 0 < int(self.port) < 1 << 16:
            raise ValueError(
                f"Invalid connection profile: port must be between 1 and 65535 (got {self.port})"
            )

        if self.use_win_auth:
            if self.username or self.password:
                raise ValueError(
                    "Invalid connection profile: username and password "
                    "cannot be used with integrated authentication"
                )
        elif not self.username or not self.password:
            raise ValueError(
                "Invalid connection profile: username and password are required "
                "unless integrated authentication is used"
            )

    def with_database(self, database: str) -> 'ConnectionProfile':
        """Return a copy of this profile targeting another database."""
        return dataclasses.replace(self, database=database)

    def bcp_server_address(self) -> str:
        """Server address in bcp -S syntax: tcp:host,port or tcp:host\\instance."""
        if self.use_named_instance:
            return f"tcp:{self.hostname}\\{self.instance}"
        return f"tcp:{self.hostname},{self.port}"

    def bcp_auth_args(self) -> List[str]:
        """Authentication arguments for bcp: -T, or -U user -P password."""
        if self.use_win_auth:
            return ["-T"]
        return ["-U", self.username, "-P", self.password]

    def odbc_config(self, database: str = '') -> Dict[str, str]:
        """
        Build ODBC connection parameters for this profile.

        Args:
            database: Database to connect to, defaults to the profile database

        Returns:
            Dictionary of ODBC connection string keys and values
        """
        if self.use_named_instance:
            server = f"{self.hostname}\\{self.instance}"
        elif self.port != DEFAULT_PORT:
            server = f"{self.hostname},{self.port}"
        else:
            server = self.hostname

        config = {
            'DRIVER': '{ODBC Driver 18 for SQL Server}',
            'SERVER': server,
            'DATABASE': database or self.database,
            'TrustServerCertificate': 'yes' if self.accept_invalid_tls else 'no',
        }

        if self.use_win_auth:
            config['Trusted_Connection'] = 'yes'
        else:
            config['UID'] = self.username
            config['PWD'] = self.password
            config['Trusted_Connection'] = 'no'

        return config

    @classmethod
    def from_airflow_connection(cls, conn_id: str) -> 'ConnectionProfile':
        """
        Build a profile from an Airflow connection.

        The connection's schema field holds the database name. A connection
        without a login uses integrated authentication. An "instance" key in
        the connection extras selects a named instance.

        Args:
            conn_id: Airflow connection ID for the database

        Returns:
            ConnectionProfile for the connection
        """
        from airflow.hooks.base import BaseHook

        conn = BaseHook.get_connection(conn_id)
        extra = conn.extra_dejson or {}
        instance = extra.get('instance', '') or ''
        use_win_auth = not conn.login

        return cls(
            hostname=conn.host,
            port=conn.port or DEFAULT_PORT,
            instance=instance,
            use_named_instance=bool(instance),
            username='' if use_win_auth else conn.login,
            password='' if use_win_auth else (conn.password or ''),
            use_win_auth=use_win_auth,
            database=conn.schema or '',
            accept_invalid_tls=not extra.get('check_certificate', False),
        )

    @classmethod
    def from_env(cls) -> 'ConnectionProfile':
        """
        Build a profile from MSSQL_* environment variables.

        The password is read from MSSQL_PASSWORD, falling back to
        WDBTRANSFERPASSWORD.
        """
        instance = os.environ.get('MSSQL_INSTANCE', '')
        use_win_auth = _env_flag('MSSQL_WINDOWS_AUTH')
        password = os.environ.get('MSSQL_PASSWORD') or os.environ.get('WDBTRANSFERPASSWORD', '')

        return cls(
            hostname=os.environ.get('MSSQL_HOST', 'localhost'),
            port=int(os.environ.get('MSSQL_PORT', str(DEFAULT_PORT))),
            instance=instance,
            use_named_instance=bool(instance),
            username='' if use_win_auth else os.environ.get('MSSQL_USERNAME', ''),
            password='' if use_win_auth else password,
            use_win_auth=use_win_auth,
            database=os.environ.get('MSSQL_DATABASE', ''),
            accept_invalid_tls=not _env_flag('MSSQL_CHECK_CERTIFICATE'),
        )
