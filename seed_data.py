#!/usr/bin/env python3

import os
from datetime import date, timedelta
from decimal import Decimal

from kuja.database import Base, SessionLocal, engine
from kuja.models import User, Destination, DestinationReview, TravelPackage, Booking, Payment, Review
from kuja.auth.utils import get_password_hash

def create_seed_data():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()

    try:
        print("🚀 Creating seed data for Kuja Twende Adventures...")

        # Clear existing data (in reverse dependency order)
        print("Clearing existing data...")
        db.query(Review).delete()
        db.query(DestinationReview).delete()
        db.query(Payment).delete()
        db.query(Booking).delete()
        db.query(TravelPackage).delete()
        db.query(Destination).delete()
        db.query(User).delete()

        # 1. Users
        print("Creating users...")
        users = [
            User(
                name="Kuja Admin",
                email="admin@kujatwende.co.ke",
                password=get_password_hash(os.getenv("SEED_ADMIN_PASSWORD", "Admin123!")),
                role="admin",
                phone="0700000000"
            ),
            User(
                name="Amani Otieno",
                email="amani.otieno@gmail.com",
                password=get_password_hash("safari123"),
                role="user",
                phone="0712345678"
            ),
        ]
        db.add_all(users)
        db.flush()

        # 2. Destinations
        print("Creating destinations...")
        destinations = [
            Destination(
                name="Maasai Mara",
                slug="maasai-mara",
                description="Kenya's most famous reserve and stage of the great wildebeest migration.",
                region="Rift Valley",
                best_time_to_visit="July - October",
                highlights=["Great Migration", "Big Five", "Maasai villages"],
                activities=["Game drives", "Hot air balloon safari", "Cultural visits"],
                featured=True
            ),
            Destination(
                name="Diani Beach",
                slug="diani-beach",
                description="Palm-fringed white sand and coral reefs on the south coast.",
                region="Coast",
                best_time_to_visit="December - March",
                highlights=["Coral reefs", "Colobus monkeys"],
                activities=["Snorkelling", "Kite surfing", "Dhow cruises"],
                featured=True
            ),
            Destination(
                name="Amboseli National Park",
                slug="amboseli-national-park",
                description="Elephant herds beneath the snows of Kilimanjaro.",
                region="Rift Valley",
                best_time_to_visit="June - October",
                highlights=["Kilimanjaro views", "Elephants"],
                activities=["Game drives", "Bird watching"]
            ),
            Destination(
                name="Samburu National Reserve",
                slug="samburu-national-reserve",
                description="Arid northern reserve home to the Samburu special five.",
                region="Northern Kenya",
                best_time_to_visit="June - October",
                highlights=["Reticulated giraffe", "Samburu culture"],
                activities=["Game drives", "Cultural visits"]
            ),
        ]
        db.add_all(destinations)
        db.flush()

        mara, diani, amboseli, samburu = destinations
        today = date.today()

        # 3. Packages
        print("Creating travel packages...")
        packages = [
            TravelPackage(
                destination_id=mara.id,
                name="Maasai Mara Safari Adventure",
                description="Three days of game drives across the Mara with a night at a tented camp.",
                duration_days=3,
                price=Decimal("45000"),
                start_date=today + timedelta(days=10),
                end_date=today + timedelta(days=13),
                featured=True,
                difficulty="Easy",
                category="Safari",
                inclusions=["Transport", "Accommodation", "Park fees", "Meals"],
                highlights=["Big Five", "Mara River"],
                total_seats=20,
                available_seats=20,
                status="active"
            ),
            TravelPackage(
                destination_id=diani.id,
                name="Diani Beach Escape",
                description="Four relaxed days on the south coast.",
                duration_days=4,
                price=Decimal("38000"),
                start_date=today + timedelta(days=60),
                end_date=today + timedelta(days=64),
                featured=True,
                difficulty="Easy",
                category="Beach",
                inclusions=["Transport", "Accommodation", "Breakfast"],
                highlights=["Snorkelling at Kisite"],
                total_seats=16,
                available_seats=16,
                status="upcoming"
            ),
            TravelPackage(
                destination_id=amboseli.id,
                name="Amboseli Wildlife Tour",
                description="A day among Amboseli's elephants with Kilimanjaro as the backdrop.",
                duration_days=1,
                price=Decimal("12500"),
                start_date=today + timedelta(days=20),
                end_date=today + timedelta(days=20),
                difficulty="Easy",
                category="Day trip",
                inclusions=["Transport", "Park fees", "Lunch"],
                total_seats=14,
                available_seats=14,
                status="upcoming"
            ),
            TravelPackage(
                destination_id=samburu.id,
                name="Samburu Culture Walk",
                description="Community-led walk through a Samburu manyatta.",
                duration_days=1,
                price=Decimal("0"),
                is_free=True,
                difficulty="Moderate",
                category="Culture",
                total_seats=25,
                available_seats=25,
                status="active"
            ),
        ]
        db.add_all(packages)
        db.commit()

        print("✅ Successfully created seed data for Kuja Twende Adventures!")
        print(f"Created:")
        print(f"  - {len(users)} users (admin: admin@kujatwende.co.ke)")
        print(f"  - {len(destinations)} destinations")
        print(f"  - {len(packages)} travel packages")

    except Exception as e:
        print(f"❌ Error creating seed data: {e}")
        db.rollback()
        raise
    finally:
        db.close()

if __name__ == "__main__":
    create_seed_data()
