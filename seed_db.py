from app import app, db
from models import Category, University

# This script populates your DB with the standard categories and a sample school
with app.app_context():
    categories = [
        "Books & Reviewers",
        "Uniforms",
        "Electronics",
        "Gadgets & Accessories",
        "School Supplies",
        "Lab Equipment",
        "Dorm Essentials",
        "Clothing",
        "Food",
        "Others",
    ]

    for name in categories:
        if not Category.query.filter_by(name=name).first():
            db.session.add(Category(name=name))

    if not University.query.filter_by(name="University of the Philippines Diliman").first():
        db.session.add(University(
            name="University of the Philippines Diliman",
            abbreviation="UPD",
            domain="up.edu.ph",
        ))

    db.session.commit()
    print("✅ Categories and sample university seeded!")
