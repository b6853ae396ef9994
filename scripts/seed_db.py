#!/usr/bin/env python3
"""Recreate the database and load demo users, roles and conversations."""

import sys
import os

# backend/ holds the ragchat package
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

from ragchat.config import settings
from ragchat.core.security import get_password_hash
from ragchat.database import Database
from ragchat.models.chat_history import Conversation, Message, MessageFeedback, Participant
from ragchat.services.credential_store import credential_store
from ragchat.services.google_oauth import PROVIDER

DEMO_PASSWORD = "Password123!"

DEMO_USERS = [
    # email, display name, roles, active
    ("ada.admin@example.com", "Ada Admin", ["admin", "user"], True),
    ("carlos.analyst@example.com", "Carlos Analyst", ["analyst", "user"], True),
    ("sofia.user@example.com", "Sofia User", ["user"], True),
    ("inactivo@example.com", "Inactive User", ["user"], False),
]


def seed(database: Database) -> None:
    database.drop_all()
    database.create_all()

    with database.session() as db:
        credential_store.ensure_default_roles(db)

        password_hash = get_password_hash(DEMO_PASSWORD)
        users = {}
        for email, name, roles, active in DEMO_USERS:
            user = credential_store.create_user(db, email, name, password_hash)
            user.is_active = active
            for role in roles:
                credential_store.assign_role(db, user.id, role)
            users[email] = user
        db.commit()

        carlos = users["carlos.analyst@example.com"]
        credential_store.link_oauth_account(db, carlos.id, PROVIDER, "google-demo-carlos")

        sofia = users["sofia.user@example.com"]
        conversation = Conversation(owner_user_id=sofia.id, title="Getting started")
        db.add(conversation)
        db.flush()
        db.add(Participant(conversation_id=conversation.id, user_id=sofia.id, is_owner=True))
        db.add(Participant(conversation_id=conversation.id, user_id=carlos.id))

        question = Message(
            conversation_id=conversation.id,
            sender="user",
            sender_user_id=sofia.id,
            content="What documents does the knowledge base cover?",
        )
        answer = Message(
            conversation_id=conversation.id,
            sender="bot",
            content="It covers the onboarding guides and the product FAQ.",
            latency_ms=820,
            meta={"rag": {"request": {"question": question.content, "k": 5, "evaluate": True}}},
        )
        db.add_all([question, answer])
        db.flush()
        db.add(MessageFeedback(message_id=answer.id, user_id=sofia.id, rating=5, comment="Helpful"))
        db.add(MessageFeedback(message_id=answer.id, user_id=carlos.id, rating=4))
        db.commit()

    print("=" * 60)
    print("DEMO DATA LOADED")
    print("=" * 60)
    for email, _, roles, active in DEMO_USERS:
        state = "active" if active else "inactive"
        print(f"  - {email} [{', '.join(roles)}] ({state})")
    print(f"\nPassword for every demo user: {DEMO_PASSWORD}")


if __name__ == "__main__":
    seed(Database.from_settings(settings))
