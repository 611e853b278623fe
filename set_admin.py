#!/usr/bin/env python3
"""
Grant or revoke EduCart admin access by email.

Usage:
  FLASK_APP=app python set_admin.py your@school.edu.ph
  FLASK_APP=app python set_admin.py your@school.edu.ph --revoke

The user must already have an account.
"""
import sys
import argparse

if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Grant admin access by email')
    parser.add_argument('email', help='Email address of an existing account')
    parser.add_argument('--revoke', action='store_true', help='Remove admin access instead')
    args = parser.parse_args()

    from app import app, db
    from models import User
    from sqlalchemy import func

    with app.app_context():
        email = args.email.strip().lower()
        user = User.query.filter(func.lower(User.email) == email).first()
        if not user:
            print(f"No account found for {email}. Ask them to sign up first.")
            sys.exit(1)
        user.is_admin = not args.revoke
        db.session.commit()
        print(f"Done! {email} is {'no longer' if args.revoke else 'now'} an admin.")
