import argparse

from sqlalchemy import insert, select

from jubilee.core.database import SessionLocal, engine
from jubilee.models.registrant import (
    create_tables,
    event_roles,
    event_teams,
    metadata,
    registrants,
    registrations,
)

DEMO_TEAMS = [
    ("team-tokyo", "Tokyo"),
    ("team-kanagawa", "Kanagawa"),
]

DEMO_ROLES = [
    ("role-le-tan", "Ban Lễ Tân", "Đón tiếp người tham dự", "Ban Tổ Chức"),
]

DEMO_REGISTRATIONS = [
    # (registration id, invoice code, status, [(registrant id, saint name, full name, role id, team id, second day only)])
    ("reg-001", "DH2025-001", "confirmed", [
        ("r-001", "Giuse", "Nguyễn Văn An", None, "team-tokyo", False),
        ("r-002", "Maria", "Trần Thị Bình", "role-le-tan", "team-tokyo", False),
    ]),
    ("reg-002", "DH2025-002", "pending", [
        ("r-003", "Phêrô", "Lê Văn Cường", None, "team-kanagawa", True),
    ]),
]


def seed_demo_data() -> None:
    db = SessionLocal()

    try:
        for team_id, name in DEMO_TEAMS:
            if db.execute(select(event_teams.c.id).where(event_teams.c.id == team_id)).first():
                print(f"• Skipped team '{name}': already exists")
                continue
            db.execute(insert(event_teams).values(id=team_id, name=name))

        for role_id, name, description, team_name in DEMO_ROLES:
            if db.execute(select(event_roles.c.id).where(event_roles.c.id == role_id)).first():
                print(f"• Skipped role '{name}': already exists")
                continue
            db.execute(insert(event_roles).values(id=role_id, name=name, description=description, team_name=team_name))

        for reg_id, invoice_code, status, people in DEMO_REGISTRATIONS:
            if db.execute(select(registrations.c.id).where(registrations.c.id == reg_id)).first():
                print(f"• Skipped registration {invoice_code}: already exists")
                continue
            db.execute(insert(registrations).values(id=reg_id, invoice_code=invoice_code, status=status))
            for person_id, saint_name, full_name, role_id, team_id, second_day_only in people:
                db.execute(
                    insert(registrants).values(
                        id=person_id,
                        registration_id=reg_id,
                        saint_name=saint_name,
                        full_name=full_name,
                        event_role_id=role_id,
                        event_team_id=team_id,
                        second_day_only=second_day_only,
                    )
                )
                print(f"✓ Added registrant '{full_name}' ({invoice_code})")

        db.commit()
    except Exception as e:
        db.rollback()
        print(f"✗ Error: {e}")
        raise
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(description="Create the registration tables")
    parser.add_argument("--seed", action="store_true", help="insert a few demo registrants")
    args = parser.parse_args()

    create_tables(engine)
    print("Created tables:", list(metadata.tables.keys()))

    if args.seed:
        seed_demo_data()


if __name__ == '__main__':
    main()
