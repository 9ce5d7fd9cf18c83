# SPDX-License-Identifier: Apache-2.0

"""
Middleware package for request processing.

Access guard, request parsing, error responses, rate limiting and CORS for
the permit portal API.
"""
