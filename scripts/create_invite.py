#!/usr/bin/env python3
"""
Create a sign-up invite code — CLI wrapper.

Invite logic lives in trackbit.routes.invites.

Usage:
  python scripts/create_invite.py trackbit.db
  python scripts/create_invite.py trackbit.db --email ada@example.com --role admin
  python scripts/create_invite.py trackbit.db --max-uses 5 --expires-days 14
"""

import argparse
import datetime
import sys

from trackbit.auth import utcnow
from trackbit.crud_engine import transaction
from trackbit.db import init_db
from trackbit.routes.invites import issue_invite


def main(argv=None):
    parser = argparse.ArgumentParser(description='Create a Trackbit invite code')
    parser.add_argument('db_path', help='SQLite database file')
    parser.add_argument('--email', default=None,
                        help='Restrict the invite to this e-mail address')
    parser.add_argument('--role', default='tester',
                        help='Role given to the invited user (default: tester)')
    parser.add_argument('--max-uses', type=int, default=1,
                        help='Number of sign-ups the code allows (default: 1)')
    parser.add_argument('--expires-days', type=int, default=None,
                        help='Days until the code expires (default: never)')
    args = parser.parse_args(argv)

    if args.max_uses < 1:
        print("Error: --max-uses must be at least 1", file=sys.stderr)
        return 2

    values = {'role': args.role, 'max_uses': args.max_uses}
    if args.email:
        values['email'] = args.email.strip().lower()
    if args.expires_days is not None:
        values['expires_at'] = utcnow() + datetime.timedelta(days=args.expires_days)

    conn = init_db(args.db_path)
    try:
        with transaction(conn):
            invite = issue_invite(conn, **values)
    finally:
        conn.close()

    print(f"Invite code: {invite['code']}")
    print(f"  role:     {invite['role']}")
    print(f"  max uses: {invite['max_uses']}")
    if invite['email']:
        print(f"  email:    {invite['email']}")
    if invite['expires_at']:
        print(f"  expires:  {invite['expires_at']}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
