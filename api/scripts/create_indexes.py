#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Prepare the permit portal database.

Creates the collection indexes, enables change stream pre-images on
``applications`` so dashboard notices can tell status changes apart, and
optionally seeds super administrator role rows:

    python scripts/create_indexes.py mayor@dipolog.gov.ph it@dipolog.gov.ph
"""

import sys
import os
import logging

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models.entities import UserRoleAssignment
from models.enums import UserRole
from services.mongodb import get_mongodb_service, close_mongodb_connection
from services.records import APPLICATIONS, RoleStore

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def seed_super_admins(role_store: RoleStore, emails):
    """Give each email the super_admin role, keyed by the email itself."""
    for email in emails:
        assignment = UserRoleAssignment(user_id=email.strip().lower(), email=email, role=UserRole.SUPER_ADMIN)
        role_store.upsert_role(assignment)
        logger.info(f"Seeded super_admin role for {assignment.email}")


def main(argv=None):
    emails = [arg for arg in (sys.argv[1:] if argv is None else argv) if arg.strip()]
    try:
        mongodb_service = get_mongodb_service()

        health = mongodb_service.health_check()
        if health['status'] != 'healthy':
            logger.error(f"MongoDB is not healthy: {health}")
            sys.exit(1)

        logger.info(f"Connected to MongoDB {health['version']}, database {health['database']}")

        mongodb_service.create_indexes()
        try:
            mongodb_service.enable_change_pre_images(APPLICATIONS)
        except Exception as e:
            # Needs MongoDB 6.0+
            logger.warning(f"Pre-images unavailable ({e}); status changes are read from update descriptions")

        if emails:
            seed_super_admins(RoleStore(mongodb_service), emails)

        logger.info("Permit portal database ready")

    except Exception as e:
        logger.error(f"Database setup failed: {e}")
        sys.exit(1)
    finally:
        close_mongodb_connection()


if __name__ == "__main__":
    main()
