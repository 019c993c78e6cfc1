"""Setup script for the Order Service."""

from setuptools import setup, find_packages

setup(
    name="order-service",
    version="0.1.0",
    description="Order lifecycle service with a transactional outbox and guarded state transitions",
    python_requires=">=3.10",
    packages=find_packages(include=["order_service", "order_service.*"]),
    install_requires=[
        line.strip()
        for line in open("requirements.txt")
        if line.strip() and not line.startswith("#") and not line.startswith("git+")
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "pytest-mock>=3.12.0",
            "aiosqlite>=0.19.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "order-service-relay=order_service.workers.outbox_relay:main",
            "order-service-consumer=order_service.workers.event_consumer:main",
        ]
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Framework :: FastAPI",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
