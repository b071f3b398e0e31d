import unittest

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from services.user_roles import (
    bootstrap_admin,
    get_user_role,
    get_user_role_by_id,
    get_users,
    invite_user,
    remove_user,
    set_user_role,
    sync_user,
)
from shared.auth_context import Actor, AuthorizationError, Identity
from shared.db import Base, User, UserRole


class UserRoleTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine("sqlite:///:memory:", future=True)
        Base.metadata.create_all(bind=self.engine)
        Session = sessionmaker(bind=self.engine)
        self.db = Session()
        self.admin = self._make_user("admin@example.com", "idp|admin", "admin")
        self.tech = self._make_user("tech@example.com", "idp|tech", "technician")

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def _make_user(self, email, subject, role=None):
        user = User(first_name="Test", last_name="User", email=email, external_id=subject)
        self.db.add(user)
        self.db.flush()
        if role:
            self.db.add(UserRole(user_id=str(user.id), role=role))
        self.db.commit()
        return Actor(user_id=str(user.id), email=email, subject=subject)

    def test_get_user_role(self):
        self.assertEqual(get_user_role(self.db, self.admin), "admin")
        self.assertEqual(get_user_role(self.db, self.tech), "technician")
        self.assertIsNone(get_user_role(self.db, None))
        unassigned = self._make_user("new@example.com", "idp|new")
        self.assertIsNone(get_user_role(self.db, unassigned))

    def test_admin_can_set_role_and_assignment_stays_unique(self):
        self.assertEqual(set_user_role(self.db, self.admin, self.tech.user_id, "manager"), {"success": True})
        set_user_role(self.db, self.admin, self.tech.user_id, "user")
        rows = self.db.query(UserRole).filter_by(user_id=self.tech.user_id).all()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].role, "user")

    def test_admin_can_assign_role_to_unassigned_user(self):
        other = self._make_user("other@example.com", "idp|other")
        set_user_role(self.db, self.admin, other.user_id, "technician")
        self.assertEqual(get_user_role_by_id(self.db, self.admin, other.user_id), "technician")

    def test_non_admin_cannot_set_roles(self):
        with self.assertRaises(AuthorizationError) as ctx:
            set_user_role(self.db, self.tech, self.tech.user_id, "admin")
        self.assertEqual(str(ctx.exception), "Only admins can set user roles")
        self.assertEqual(get_user_role(self.db, self.tech), "technician")

    def test_invalid_role_is_rejected(self):
        with self.assertRaises(ValueError):
            set_user_role(self.db, self.admin, self.tech.user_id, "owner")

    def test_get_users_is_admin_only_and_defaults_role(self):
        self._make_user("plain@example.com", "idp|plain")
        users = get_users(self.db, self.admin)
        roles = {user["email"]: user["role"] for user in users}
        self.assertEqual(roles["admin@example.com"], "admin")
        self.assertEqual(roles["plain@example.com"], "user")
        with self.assertRaises(AuthorizationError):
            get_users(self.db, self.tech)
        with self.assertRaises(AuthorizationError):
            get_user_role_by_id(self.db, self.tech, self.admin.user_id)

    def test_invite_user_creates_pending_user_with_role(self):
        result = invite_user(
            self.db,
            self.admin,
            first_name="Ada",
            last_name="Lovelace",
            email="Ada@Example.com",
            role="manager",
        )
        user = self.db.query(User).filter_by(id=int(result["userId"])).one()
        self.assertEqual(user.status, "pending")
        self.assertEqual(user.email, "ada@example.com")
        self.assertEqual(get_user_role_by_id(self.db, self.admin, result["userId"]), "manager")
        with self.assertRaises(ValueError):
            invite_user(self.db, self.admin, first_name="A", last_name="L", email="ada@example.com", role="user")
        with self.assertRaises(AuthorizationError):
            invite_user(self.db, self.tech, first_name="B", last_name="C", email="b@example.com", role="user")

    def test_remove_user(self):
        with self.assertRaises(ValueError):
            remove_user(self.db, self.admin, self.admin.user_id)
        with self.assertRaises(AuthorizationError):
            remove_user(self.db, self.tech, self.admin.user_id)
        remove_user(self.db, self.admin, self.tech.user_id)
        self.assertIsNone(self.db.query(User).filter_by(id=int(self.tech.user_id)).one_or_none())
        self.assertIsNone(self.db.query(UserRole).filter_by(user_id=self.tech.user_id).one_or_none())

    def test_sync_user_creates_user_with_default_role(self):
        result = sync_user(self.db, Identity(subject="idp|fresh", email="fresh@example.com"), first_name="Fresh")
        self.assertTrue(result["isNew"])
        self.assertEqual(result["role"], "user")
        again = sync_user(self.db, Identity(subject="idp|fresh", email="fresh@example.com"))
        self.assertFalse(again["isNew"])
        self.assertEqual(again["userId"], result["userId"])
        self.assertEqual(self.db.query(UserRole).filter_by(user_id=result["userId"]).count(), 1)

    def test_sync_user_links_invited_user_and_keeps_role(self):
        invited = invite_user(
            self.db, self.admin, first_name="Tom", last_name="Tech", email="tom@example.com", role="technician"
        )
        result = sync_user(self.db, Identity(subject="idp|tom", email="tom@example.com"))
        self.assertFalse(result["isNew"])
        self.assertEqual(result["userId"], invited["userId"])
        self.assertEqual(result["role"], "technician")
        user = self.db.query(User).filter_by(id=int(invited["userId"])).one()
        self.assertEqual(user.status, "active")
        self.assertEqual(user.external_id, "idp|tom")

    def test_sync_user_rejects_email_linked_to_another_subject(self):
        sync_user(self.db, Identity(subject="idp|first", email="shared@example.com"))
        with self.assertRaises(ValueError):
            sync_user(self.db, Identity(subject="idp|second", email="Shared@example.com"))
        self.db.rollback()
        self.assertEqual(self.db.query(User).filter_by(email="shared@example.com").count(), 1)
        self.assertIsNone(self.db.query(User).filter_by(external_id="idp|second").one_or_none())

    def test_sync_user_does_not_downgrade_existing_role(self):
        result = sync_user(self.db, Identity(subject="idp|admin", email="admin@example.com"))
        self.assertEqual(result["role"], "admin")

    def test_bootstrap_admin_only_when_no_admin_exists(self):
        with self.assertRaises(AuthorizationError):
            bootstrap_admin(self.db, self.tech)
        self.db.query(UserRole).filter_by(role="admin").delete()
        self.db.commit()
        bootstrap_admin(self.db, self.tech)
        self.assertEqual(get_user_role(self.db, self.tech), "admin")


if __name__ == "__main__":
    unittest.main()
