# SPDX-License-Identifier: Apache-2.0

"""
Domain logic package for the permit portal.

Pure functions and tables for the application status workflow and for
role-based authorization. Nothing here touches the database or the network.
"""
