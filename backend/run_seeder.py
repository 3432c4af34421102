"""Populate demo users, a course with one module and the chatbot knowledge base."""

from lms_api.db import init_db
from lms_api.seed import ensure_demo_data


def main() -> None:
	"""Initialise the database schema and load deterministic demo data."""
	init_db()
	ensure_demo_data()


if __name__ == "__main__":
	main()
