"""Entity classes shared by the test suite.

Relation targets resolve by class name, so every test entity lives here
under a unique name.
"""

from quarrydb import BelongsTo, BelongsToMany, Column, FieldType, HasMany, HasOne, Id, KeyAction, Model


class Role(Model):
    __tablename__ = "roles"

    id = Id()
    name: str = Column(length=50)
    users = HasMany("User", foreign_key="roleId")


class User(Model):
    __tablename__ = "users"

    id = Id()
    email: str = Column(unique=True)
    active: bool = Column(default=True)
    roleId: int = Column()
    role = BelongsTo("Role", foreign_key="roleId")
    posts = HasMany("Post")
    profile = HasOne("Profile")


class Profile(Model):
    __tablename__ = "profiles"

    id = Id()
    bio: str | None = Column()
    user_id: int = Column()


class Post(Model):
    __tablename__ = "posts"
    __soft_delete__ = "deleted_at"
    __timestamps__ = True

    id = Id()
    title: str = Column()
    user_id: int = Column()
    author = BelongsTo("User", foreign_key="user_id")
    tags = BelongsToMany("Tag")
    comments = HasMany("Comment")


class Tag(Model):
    __tablename__ = "tags"

    id = Id()
    name: str = Column(length=50, unique=True)
    posts = BelongsToMany("Post")


class Comment(Model):
    __tablename__ = "comments"

    id = Id()
    body: str = Column(FieldType.TEXT)
    post_id: int = Column()
    post = BelongsTo("Post")


class Customer(Model):
    __tablename__ = "customers"

    id = Id()
    full_name: str = Column(length=120, renamed_from="name")
    score: int | None = Column(FieldType.INT_UNSIGNED)
    status: str = Column(enums=["active", "banned"], default="active")


class Invite(Model):
    __tablename__ = "invites"

    id = Id()
    code: str = Column(FieldType.CHAR, length=12)
    role = BelongsTo(Role, on_delete=KeyAction.SET_NULL)


class AuditEntry(Model):
    id = Id()
    message: str = Column(FieldType.TEXT)


class Subscriber(Model):
    __tablename__ = "subscribers"

    id = Id()
    email: str = Column(name="email_address", unique=True)
    display: str | None = Column(name="DisplayName", length=80)
