"""
Unit tests for the schemata CLI interface.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import yaml
from click.testing import CliRunner

from schemata.cli import handle_errors, main
from schemata.config import SchemataConfig
from schemata.exceptions import NotFoundError
from schemata.store.factory import Stores
from schemata.store.memory import InMemorySchemaStore, InMemoryTransactionStore


@pytest.fixture
def runner():
    """Click test runner."""
    return CliRunner()


@pytest.fixture
def postgres_config_file(tmp_path, postgres_config_data):
    path = tmp_path / "postgres.yaml"
    path.write_text(yaml.dump(postgres_config_data))
    return str(path)


@pytest.fixture
def seeded_stores(people_schema):
    """Memory stores holding the people schema."""
    stores = Stores(InMemorySchemaStore(), InMemoryTransactionStore())
    asyncio.run(stores.schemas.save(people_schema))
    return stores


class TestCLIMain:
    """Test main CLI functionality."""

    def test_cli_help(self, runner):
        """Help lists the commands."""
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "versioned global schemas" in result.output
        for command in ("init", "validate-config", "setup-db", "show", "check-type"):
            assert command in result.output

    def test_cli_version(self, runner):
        """--version prints the package version."""
        result = runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestInitCommand:
    """Test init command functionality."""

    def test_init_default_output(self, runner):
        """init writes a postgres configuration by default."""
        with runner.isolated_filesystem():
            result = runner.invoke(main, ["init"])

            assert result.exit_code == 0
            assert "Configuration file created: schemata-config.yaml" in result.output
            with open("schemata-config.yaml") as f:
                data = yaml.safe_load(f)
            assert data["storage"]["backend"] == "postgres"
            assert data["storage"]["connection"]["host"] == "${POSTGRES_HOST}"

    def test_init_memory_backend_validates(self, runner):
        """A generated memory configuration passes validation."""
        with runner.isolated_filesystem():
            runner.invoke(main, ["init", "-o", "memory.yaml", "--backend", "memory"])
            result = runner.invoke(main, ["validate-config", "-c", "memory.yaml"])

            assert result.exit_code == 0
            assert "Configuration is valid" in result.output

    @patch("schemata.cli.click.confirm")
    def test_init_file_exists_no_overwrite(self, mock_confirm, runner):
        """Declining the overwrite prompt keeps the existing file."""
        mock_confirm.return_value = False

        with runner.isolated_filesystem():
            with open("existing.yaml", "w") as f:
                f.write("existing content")

            result = runner.invoke(main, ["init", "-o", "existing.yaml"])

            assert result.exit_code == 0
            with open("existing.yaml") as f:
                assert f.read() == "existing content"


class TestValidateConfigCommand:
    """Test validate-config."""

    def test_valid_postgres_config(self, runner, postgres_config_file):
        """A complete postgres configuration is valid and summarized."""
        result = runner.invoke(main, ["validate-config", "-c", postgres_config_file])

        assert result.exit_code == 0
        assert "Configuration is valid" in result.output
        assert "schemata_test" in result.output

    def test_postgres_without_connection(self, runner, tmp_path):
        """The postgres backend needs a connection section."""
        path = tmp_path / "bad.yaml"
        path.write_text("storage:\n  backend: postgres\n")

        result = runner.invoke(main, ["validate-config", "-c", str(path)])

        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_missing_file(self, runner):
        """Nonexistent files are rejected by click."""
        result = runner.invoke(main, ["validate-config", "-c", "missing.yaml"])
        assert result.exit_code != 0


class TestSetupDbCommand:
    """Test setup-db."""

    def test_memory_backend(self, runner, memory_config_file):
        """Nothing to set up for the memory backend."""
        result = runner.invoke(main, ["setup-db", "-c", memory_config_file])

        assert result.exit_code == 0
        assert "nothing to set up" in result.output

    @patch("schemata.cli.MetadataManager")
    @patch("schemata.cli.StoreFactory.create")
    def test_postgres_backend(
        self, mock_create, mock_manager_cls, runner, postgres_config_file
    ):
        """Tables are created through the metadata manager."""
        pool = MagicMock()
        mock_create.return_value = Stores(MagicMock(), MagicMock(), pool)
        manager = mock_manager_cls.return_value
        manager.setup_tables = AsyncMock(
            return_value={
                "tables_created": ["global_schemas"],
                "tables_existing": ["schema_transactions"],
                "errors": [],
            }
        )
        manager.check_integrity = AsyncMock(return_value={"is_healthy": True})

        result = runner.invoke(main, ["setup-db", "-c", postgres_config_file])

        assert result.exit_code == 0
        assert "Created table global_schemas" in result.output
        assert "schema_transactions already exists" in result.output
        pool.__aenter__.assert_awaited_once()
        pool.__aexit__.assert_awaited_once()

    @patch("schemata.cli.MetadataManager")
    @patch("schemata.cli.StoreFactory.create")
    def test_postgres_backend_errors(
        self, mock_create, mock_manager_cls, runner, postgres_config_file
    ):
        """Table errors exit with status 1."""
        mock_create.return_value = Stores(MagicMock(), MagicMock(), MagicMock())
        manager = mock_manager_cls.return_value
        manager.setup_tables = AsyncMock(
            return_value={
                "tables_created": [],
                "tables_existing": [],
                "errors": ["Failed to create table global_schemas: denied"],
            }
        )
        manager.check_integrity = AsyncMock(return_value={"is_healthy": False})

        result = runner.invoke(main, ["setup-db", "-c", postgres_config_file])

        assert result.exit_code == 1
        assert "denied" in result.output


class TestSchemaCommands:
    """Test show, history and transactions."""

    @patch("schemata.cli.StoreFactory.create")
    def test_show(self, mock_create, runner, memory_config_file, seeded_stores, people_schema):
        """show prints the schema header and its columns."""
        mock_create.return_value = seeded_stores

        result = runner.invoke(main, ["show", "-c", memory_config_file, people_schema.id])

        assert result.exit_code == 0
        assert "people" in result.output
        assert "email" in result.output
        assert "required" in result.output

    def test_show_missing(self, runner, memory_config_file):
        """Unknown schemas exit with status 1."""
        result = runner.invoke(main, ["show", "-c", memory_config_file, "schema_missing"])

        assert result.exit_code == 1
        assert "not found" in result.output

    @patch("schemata.cli.StoreFactory.create")
    def test_history(self, mock_create, runner, memory_config_file, seeded_stores, people_schema):
        """history lists the lineage."""
        mock_create.return_value = seeded_stores

        result = runner.invoke(main, ["history", "-c", memory_config_file, people_schema.id])

        assert result.exit_code == 0
        assert "History of people" in result.output

    def test_transactions_empty(self, runner, memory_config_file):
        """Schemas without transactions say so."""
        result = runner.invoke(main, ["transactions", "-c", memory_config_file, "schema_1"])

        assert result.exit_code == 0
        assert "No transactions for schema schema_1" in result.output


class TestCheckTypeCommand:
    """Test check-type."""

    def test_compatible(self, runner):
        """Widenings are reported as compatible."""
        result = runner.invoke(main, ["check-type", "integer", "numeric"])

        assert result.exit_code == 0
        assert "integer -> numeric is compatible" in result.output

    def test_breaking(self, runner):
        """Narrowings are reported as breaking."""
        result = runner.invoke(main, ["check-type", "text", "integer"])

        assert result.exit_code == 0
        assert "text -> integer is a breaking change" in result.output

    def test_unknown_type(self, runner):
        """Types outside the fixed set are rejected."""
        result = runner.invoke(main, ["check-type", "text", "varchar"])
        assert result.exit_code == 2


class TestErrorHandling:
    """Test error handling functionality."""

    def test_keyboard_interrupt(self, runner, memory_config_file):
        """KeyboardInterrupt exits cleanly."""
        with patch("schemata.cli.SchemataConfig.from_yaml", side_effect=KeyboardInterrupt()):
            result = runner.invoke(main, ["validate-config", "-c", memory_config_file])

        assert result.exit_code == 0
        assert "Interrupted" in result.output

    def test_unexpected_error(self, runner, memory_config_file):
        """Unexpected errors print and exit with status 1."""
        with patch("schemata.cli.SchemataConfig.from_yaml", side_effect=Exception("boom")):
            result = runner.invoke(main, ["validate-config", "-c", memory_config_file])

        assert result.exit_code == 1
        assert "Unexpected error: boom" in result.output

    def test_decorator_passes_through(self):
        """Successful calls return their value."""
        @handle_errors
        def succeed():
            return "success"

        assert succeed() == "success"

    def test_decorator_exits_on_schemata_error(self):
        """SchemataError exits with status 1."""
        @handle_errors
        def fail():
            raise NotFoundError("Schema x not found")

        with pytest.raises(SystemExit) as exc_info:
            fail()
        assert exc_info.value.code == 1

    def test_config_defaults(self):
        """Default configuration uses the memory backend."""
        assert SchemataConfig().storage.backend == "memory"
