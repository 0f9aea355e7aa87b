from setuptools import setup, find_packages

setup(
    name="flowlimiter",
    version="0.1.0",
    packages=find_packages(include=["flowlimiter", "flowlimiter.*"]),
    python_requires=">=3.11",
    install_requires=[
        "redis>=5.0",
        "pydantic>=2.5",
        "pydantic-settings>=2.2",
    ],
    extras_require={
        "http": [
            "fastapi>=0.110",
        ],
        "test": [
            "pytest>=8.0",
            "fastapi>=0.110",
            "httpx>=0.27",
        ],
    },
)
