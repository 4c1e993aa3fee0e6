"""Tests for migration artifacts: reversal, writing, loading and the runner."""

from datetime import datetime

import pytest

from quarrydb import DatabaseConnection, QuarrySettings
from quarrydb.exceptions import MigrationError, MigrationTableNotFoundError, SeederError
from quarrydb.migrations.reversal import IRREVERSIBLE_PREFIX, RegexReversalStrategy, derive_down_statements
from quarrydb.migrations.runner import Migration, MigrationRunner, load_migration
from quarrydb.migrations.seeder import Seeder
from quarrydb.migrations.writer import MigrationWriter, class_name_for, format_statements, sanitize_name
from tests.conftest import FakeExecutor, live
from tests.entities import User
from tests.seeders import FlagSeeder


class TestReversal:
    """Down statements derived from up statements."""

    def test_user_example_reverses_in_reverse_order(self):
        up = [
            "CREATE TABLE IF NOT EXISTS `users` (\n    `id` INT AUTO_INCREMENT NOT NULL,\n"
            "    PRIMARY KEY (`id`)\n) ENGINE=InnoDB;",
            "ALTER TABLE `users` ADD CONSTRAINT `fk_users_roleId` FOREIGN KEY (`roleId`) "
            "REFERENCES `roles` (`id`) ON DELETE CASCADE ON UPDATE CASCADE;",
        ]
        assert derive_down_statements(up) == [
            "ALTER TABLE `users` DROP FOREIGN KEY `fk_users_roleId`;",
            "DROP TABLE IF EXISTS `users`;",
        ]

    @pytest.mark.parametrize(
        ("up", "down"),
        [
            (
                "ALTER TABLE `users` ADD COLUMN `active` TINYINT(1) NOT NULL DEFAULT 1;",
                "ALTER TABLE `users` DROP COLUMN `active`;",
            ),
            (
                "ALTER TABLE `users` ADD UNIQUE INDEX `users_email_unique` (`email`);",
                "ALTER TABLE `users` DROP INDEX `users_email_unique`;",
            ),
            (
                "ALTER TABLE `customers` RENAME COLUMN `name` TO `full_name`;",
                "ALTER TABLE `customers` RENAME COLUMN `full_name` TO `name`;",
            ),
            ("create table widgets (id int)", "DROP TABLE IF EXISTS `widgets`;"),
        ],
    )
    def test_reversible_statements(self, up, down):
        assert RegexReversalStrategy().reverse(up) == down

    @pytest.mark.parametrize(
        "up",
        [
            "ALTER TABLE `customers` MODIFY COLUMN `score` INT UNSIGNED NULL;",
            "ALTER TABLE `posts_tags` DROP FOREIGN KEY `fk_posts_tags_post_id`;",
            "ALTER TABLE `users` DROP COLUMN `legacy`;",
        ],
    )
    def test_irreversible_statements_become_comments(self, up):
        down = RegexReversalStrategy().reverse(up)
        assert down.startswith(IRREVERSIBLE_PREFIX)
        assert up in down

    def test_comment_lines_are_skipped(self):
        up = [
            "-- SAFETY WARNING: Potentially destructive action commented out.",
            "-- ALTER TABLE `users` DROP COLUMN `legacy`;",
        ]
        assert derive_down_statements(up) == []

    def test_unrecognized_statement_emits_nothing(self):
        assert RegexReversalStrategy().reverse("UPDATE users SET active = 1") is None

    def test_custom_strategy(self):
        class Upper:
            def reverse(self, statement):
                return statement.upper()

        assert derive_down_statements(["a", "b"], Upper()) == ["B", "A"]


class TestWriter:
    """Artifact files on disk."""

    NOW = datetime(2026, 10, 18, 9, 30, 5)

    def test_file_name_and_class(self, tmp_path):
        path = MigrationWriter(tmp_path).write(
            "Add users!", ["ALTER TABLE `users` ADD COLUMN `bio` TEXT NULL;"], now=self.NOW
        )
        assert path == tmp_path / "2026_10_18_093005_add_users.py"
        content = path.read_text()
        assert "class AddUsers(Migration):" in content
        assert "Generated 2026-10-18T09:30:05." in content

    def test_written_artifact_loads(self, tmp_path):
        up = ["ALTER TABLE `users` ADD COLUMN `bio` TEXT NULL;", "ALTER TABLE `users` MODIFY COLUMN `x` INT NULL;"]
        path = MigrationWriter(tmp_path).write("bio", up, now=self.NOW)

        migration = load_migration(path)
        assert isinstance(migration, Migration)
        assert migration.up_statements == up
        assert migration.down_statements[0].startswith(IRREVERSIBLE_PREFIX)
        assert migration.down_statements[1] == "ALTER TABLE `users` DROP COLUMN `bio`;"

    def test_explicit_down_statements(self, tmp_path):
        path = MigrationWriter(tmp_path).write("custom", ["SELECT 1"], ["SELECT 2"], now=self.NOW)
        assert load_migration(path).down_statements == ["SELECT 2"]

    def test_nothing_to_write(self, tmp_path):
        assert MigrationWriter(tmp_path / "migrations").write("empty", []) is None
        assert not (tmp_path / "migrations").exists()

    def test_comment_only_statements_write_nothing(self, tmp_path):
        statements = [
            "-- SAFETY WARNING: Potentially destructive action commented out.",
            "-- ALTER TABLE `users` DROP COLUMN `legacy`;",
            "   ",
        ]
        assert MigrationWriter(tmp_path / "migrations").write("noop", statements) is None
        assert not (tmp_path / "migrations").exists()

    def test_statements_grouped_by_table(self):
        rendered = format_statements(
            [
                "CREATE TABLE `a` (`id` INT);",
                "ALTER TABLE `a` ADD COLUMN `b` INT;",
                "CREATE TABLE `b` (`id` INT);",
            ]
        )
        lines = rendered.split("\n")
        assert len(lines) == 4
        assert lines[2] == ""
        assert lines[0].startswith("        'CREATE TABLE `a`")

    @pytest.mark.parametrize(
        ("name", "slug", "class_name"),
        [
            ("auto_generated_diff", "auto_generated_diff", "AutoGeneratedDiff"),
            ("  Create Posts Table ", "create_posts_table", "CreatePostsTable"),
            ("2fa tokens", "2fa_tokens", "Migration2faTokens"),
            ("!!!", "migration", "Migration"),
        ],
    )
    def test_name_sanitizing(self, name, slug, class_name):
        assert sanitize_name(name) == slug
        assert class_name_for(name) == class_name

    def test_load_rejects_module_without_migration(self, tmp_path):
        path = tmp_path / "2026_01_01_000000_broken.py"
        path.write_text("VALUE = 1\n")
        with pytest.raises(MigrationError, match="no Migration subclass"):
            load_migration(path)


@pytest.fixture
def db():
    conn = DatabaseConnection("sqlite:///:memory:")
    yield conn
    conn.close()


@pytest.fixture
def settings(tmp_path):
    return QuarrySettings(database_url="sqlite:///:memory:", migrations_path=str(tmp_path / "migrations"))


def write_artifact(settings, name, up, minute):
    return MigrationWriter(settings.migrations_path).write(name, up, now=datetime(2026, 1, 1, 12, minute, 0))


class TestRunner:
    """Applying and reverting artifacts against SQLite."""

    @pytest.fixture
    def artifacts(self, settings):
        return [
            write_artifact(
                settings,
                "create widgets",
                ["CREATE TABLE `widgets` (`id` INTEGER PRIMARY KEY, `name` VARCHAR(20) NOT NULL);"],
                0,
            ),
            write_artifact(
                settings,
                "add widget color",
                ["ALTER TABLE `widgets` ADD COLUMN `color` VARCHAR(20) NULL;"],
                1,
            ),
        ]

    def test_status_requires_ledger(self, db, settings):
        with pytest.raises(MigrationTableNotFoundError):
            MigrationRunner(db, settings).status()
        with pytest.raises(MigrationTableNotFoundError):
            MigrationRunner(db, settings).downgrade()

    def test_upgrade_applies_pending_in_order(self, db, settings, artifacts):
        runner = MigrationRunner(db, settings)
        assert [p.stem for p in runner.pending()] == [p.stem for p in artifacts]

        applied = runner.upgrade()
        assert applied == [p.stem for p in artifacts]
        assert db.table_exists("widgets")
        assert [c.name for c in db.introspect_schema("widgets")] == ["id", "name", "color"]
        assert runner.pending() == []
        assert runner.upgrade() == []

        statuses = runner.status()
        assert [s.applied for s in statuses] == [True, True]
        assert {s.batch for s in statuses} == {1}
        assert all(isinstance(s.applied_at, datetime) for s in statuses)

    def test_batches_and_downgrade(self, db, settings, artifacts):
        runner = MigrationRunner(db, settings)
        runner.upgrade()
        third = write_artifact(
            settings, "create gadgets", ["CREATE TABLE `gadgets` (`id` INTEGER PRIMARY KEY);"], 2
        )
        assert runner.upgrade() == [third.stem]
        assert [s.batch for s in runner.status()] == [1, 1, 2]

        assert runner.downgrade() == [third.stem]
        assert not db.table_exists("gadgets")
        assert db.table_exists("widgets")

        statuses = runner.status()
        assert [(s.name, s.applied) for s in statuses][-1] == (third.stem, False)

        assert runner.downgrade() == [artifacts[1].stem, artifacts[0].stem]
        assert not db.table_exists("widgets")
        assert runner.downgrade() == []

    def test_downgrade_multiple_steps(self, db, settings, artifacts):
        runner = MigrationRunner(db, settings)
        runner.upgrade()
        write_artifact(settings, "create gadgets", ["CREATE TABLE `gadgets` (`id` INTEGER PRIMARY KEY);"], 2)
        runner.upgrade()

        assert len(runner.downgrade(steps=2)) == 3
        assert all(not s.applied for s in runner.status())

    def test_failed_migration_is_not_recorded(self, db, settings, artifacts):
        write_artifact(settings, "broken", ["CREATE TABLE `widgets` (`id` INTEGER PRIMARY KEY);"], 5)
        runner = MigrationRunner(db, settings)

        with pytest.raises(MigrationError) as exc_info:
            runner.upgrade()
        assert exc_info.value.migration_name.endswith("_broken")

        statuses = runner.status()
        assert [s.applied for s in statuses] == [True, True, False]

    def test_missing_artifact_on_downgrade(self, db, settings, artifacts):
        runner = MigrationRunner(db, settings)
        runner.upgrade()
        artifacts[1].unlink()
        with pytest.raises(MigrationError, match="artifact not found"):
            runner.downgrade()

    def test_private_files_ignored(self, db, settings, artifacts):
        (artifacts[0].parent / "__init__.py").write_text("")
        assert len(MigrationRunner(db, settings).migration_files()) == 2


class TestGenerate:
    """Diff-to-artifact generation against a fake live database."""

    def test_generate_writes_user_example(self, settings):
        runner = MigrationRunner(FakeExecutor(), settings)
        path = runner.generate("auto_generated_diff", [User])

        assert path.name.endswith("_auto_generated_diff.py")
        migration = load_migration(path)
        assert migration.up_statements[0].startswith("CREATE TABLE IF NOT EXISTS `users`")
        assert migration.down_statements == [
            "ALTER TABLE `users` DROP FOREIGN KEY `fk_users_roleId`;",
            "DROP TABLE IF EXISTS `users`;",
        ]

    def test_generate_in_sync_writes_nothing(self, settings):
        executor = FakeExecutor(
            tables={
                "users": [
                    live("id", "int"),
                    live("email", "varchar(255)"),
                    live("active", "tinyint(1)"),
                    live("roleId", "int"),
                ]
            },
            constraints={"users": ["fk_users_roleId"]},
            indexes={"users": ["users_email_unique"]},
        )
        runner = MigrationRunner(executor, settings)
        assert runner.generate("auto_generated_diff", [User]) is None
        assert runner.migration_files() == []

    def test_generate_with_only_commented_drops_writes_nothing(self, settings):
        executor = FakeExecutor(
            tables={
                "users": [
                    live("id", "int"),
                    live("email", "varchar(255)"),
                    live("active", "tinyint(1)"),
                    live("roleId", "int"),
                    live("legacy", "int", nullable=True),
                ]
            },
            constraints={"users": ["fk_users_roleId"]},
            indexes={"users": ["users_email_unique"]},
        )
        runner = MigrationRunner(executor, settings)
        assert runner.generate("auto_generated_diff", [User]) is None
        assert runner.migration_files() == []

    def test_migration_up_suspends_checks(self):
        class AddColumn(Migration):
            up_statements = ["-- note", "ALTER TABLE `users` ADD COLUMN `bio` TEXT NULL;"]
            down_statements = ["-- IRREVERSIBLE: nothing to do"]

        executor = FakeExecutor()
        AddColumn().up(executor)
        assert executor.executed == ["ALTER TABLE `users` ADD COLUMN `bio` TEXT NULL;"]
        assert executor.checks == ["off", "on"]

        AddColumn().down(executor)
        assert executor.checks == ["off", "on"]


class TestSeeder:
    """Seeders resolved by dotted path or class and run in order."""

    def test_seed_by_dotted_path(self, db, settings):
        assert MigrationRunner(db, settings).seed("tests.seeders.FlagSeeder") == ["FlagSeeder"]
        assert db.execute("SELECT name FROM seed_flags") == [{"name": "ready"}]

    def test_seed_by_class_and_colon_path(self, db, settings):
        runner = MigrationRunner(db, settings)
        assert runner.seed(FlagSeeder, "tests.seeders:FlagSeeder") == ["FlagSeeder", "FlagSeeder"]
        assert len(db.execute("SELECT name FROM seed_flags")) == 2

    @pytest.mark.parametrize(
        ("reference", "reason"),
        [
            ("tests.seeders.NotASeeder", "must be a subclass"),
            ("tests.seeders.Missing", "has no attribute 'Missing'"),
            ("no_such_module.RoleSeeder", "cannot import module 'no_such_module'"),
            ("Bare", "expected a dotted path"),
        ],
    )
    def test_unresolvable_seeders(self, db, settings, reference, reason):
        with pytest.raises(SeederError, match=reason) as exc_info:
            MigrationRunner(db, settings).seed(reference)
        assert exc_info.value.context["seeder"] == reference

    def test_base_seeder_requires_run(self, db):
        with pytest.raises(NotImplementedError):
            Seeder().run(db)
