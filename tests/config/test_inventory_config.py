"""
Tests for inventory_config: YAML parsing, validation and runtime wiring.
"""

from dataclasses import replace
from decimal import Decimal
from uuid import uuid4

import pytest
import yaml

from inventory_config import (
    CONFIG_ENV_VAR,
    DATABASE_URL_ENV_VAR,
    DEFAULT_CONFIG_PATH,
    get_active_config,
)
from inventory_config.loader import (
    compute_checksum,
    load_configuration,
    load_yaml_file,
    parse_configuration,
)
from inventory_kernel.db.engine import reset_engine
from inventory_kernel.domain.direction import MovementCause
from inventory_kernel.domain.dtos import SaleLine
from inventory_kernel.domain.principal import Principal, RoleBasedPermissionChecker
from inventory_kernel.store.sqlalchemy_store import SqlAlchemyInventoryStore
from inventory_services.wiring import build_operations


class TestDefaults:

    def test_packaged_defaults_parse(self):
        config = load_configuration(DEFAULT_CONFIG_PATH)

        assert config.config_id == "inventory-default"
        assert config.concurrency.max_attempts == 3
        assert config.concurrency.verify_after_write is True
        assert config.costing.significant_variance_percent == Decimal("10")
        assert config.costing.price_variance_percent == Decimal("5")
        assert config.logging.level == "INFO"
        assert config.permissions.role_grants["admin"] == ("*",)

    def test_default_roles(self):
        checker = RoleBasedPermissionChecker(
            load_configuration(DEFAULT_CONFIG_PATH).permissions.role_grants
        )

        def allowed(role, action):
            return checker.has_permission(Principal(id=uuid4(), roles=frozenset({role})), action)

        assert allowed("cashier", "sale.process")
        assert not allowed("cashier", "sale.void")
        assert allowed("purchasing_manager", "purchase_order.approve")
        assert not allowed("purchasing", "purchase_order.approve")
        assert allowed("admin", "stock.override_negative")

    def test_empty_document_uses_schema_defaults(self):
        config = parse_configuration({})
        assert config.config_id == "default"
        assert config.version == 1
        assert config.permissions.role_grants == {}


class TestValidation:

    @pytest.mark.parametrize("document, key", [
        ({"logging": {"level": "LOUD"}}, "logging.level"),
        ({"concurrency": {"max_attempts": 0}}, "concurrency.max_attempts"),
        ({"concurrency": {"max_attempts": True}}, "concurrency.max_attempts"),
        ({"concurrency": {"backoff_base_seconds": -1}}, "concurrency.backoff_base_seconds"),
        ({"concurrency": {"backoff_base_seconds": 1, "backoff_max_seconds": 0.5}},
         "concurrency.backoff_max_seconds"),
        ({"costing": {"significant_variance_percent": "ten"}},
         "costing.significant_variance_percent"),
        ({"costing": {"significant_variance_percent": "-1"}},
         "costing.significant_variance_percent"),
        ({"costing": {"price_variance_percent": "five"}}, "costing.price_variance_percent"),
        ({"store": {"database_url": ""}}, "store.database_url"),
        ({"store": {"echo": "yes"}}, "store.echo"),
        ({"permissions": {"roles": {"cashier": 5}}}, "permissions.roles.cashier"),
        ({"receiving": ["strict"]}, "receiving"),
    ])
    def test_errors_name_the_key(self, document, key):
        with pytest.raises(ValueError, match=key.replace(".", r"\.")):
            parse_configuration(document)

    def test_single_action_string_is_accepted(self):
        config = parse_configuration({"permissions": {"roles": {"auditor": "stock.reconcile"}}})
        assert config.permissions.role_grants == {"auditor": ("stock.reconcile",)}

    def test_non_mapping_document(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError, match="mapping"):
            load_yaml_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_configuration(tmp_path / "absent.yaml")


class TestChecksum:

    def test_stable_across_key_order(self):
        assert compute_checksum({"a": 1, "b": {"c": 2}}) == compute_checksum({"b": {"c": 2}, "a": 1})

    def test_changes_with_content(self):
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})

    def test_parsed_config_carries_checksum(self):
        data = load_yaml_file(DEFAULT_CONFIG_PATH)
        assert load_configuration(DEFAULT_CONFIG_PATH).checksum == compute_checksum(data)


class TestActiveConfig:

    def test_env_file_and_database_override(self, tmp_path, monkeypatch, captured_logs):
        path = tmp_path / "inventory.yaml"
        path.write_text(yaml.safe_dump({"config_id": "store-7", "version": 3}))
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        monkeypatch.setenv(DATABASE_URL_ENV_VAR, "sqlite://")

        config = get_active_config()

        assert config.config_id == "store-7"
        assert config.version == 3
        assert config.store.database_url == "sqlite://"
        trace = next(r for r in captured_logs() if r["message"] == "INVENTORY_CONFIG_TRACE")
        assert trace["config_id"] == "store-7"
        assert trace["database_override"] is True

    def test_explicit_path_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CONFIG_ENV_VAR, str(tmp_path / "absent.yaml"))
        monkeypatch.delenv(DATABASE_URL_ENV_VAR, raising=False)
        config = get_active_config(DEFAULT_CONFIG_PATH)
        assert config.store.database_url == "sqlite:///inventory.db"


class TestWiring:

    @pytest.fixture
    def in_memory_config(self):
        config = load_configuration(DEFAULT_CONFIG_PATH)
        yield replace(
            config,
            store=replace(config.store, database_url="sqlite://", create_tables=True),
            concurrency=replace(config.concurrency, backoff_base_seconds=0, backoff_max_seconds=0),
        )
        reset_engine()

    def test_build_operations(self, in_memory_config, clock, admin, cashier):
        ops = build_operations(in_memory_config, clock=clock)

        assert isinstance(ops.store, SqlAlchemyInventoryStore)
        product = ops.create_product("SKU-W-1", "Widget", admin)
        ops.adjust_stock(product.id, MovementCause.ADJUSTMENT_IN, 5, admin, reason="opening")
        assert ops.process_sale("S-1", [SaleLine(product.id, 2)], cashier).success
        assert ops.get_product(product.id).quantity_on_hand == 3
