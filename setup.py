import setuptools

try:
    with open("README.md", "r", encoding="utf-8") as fh:
        long_description = fh.read()
except FileNotFoundError:
    long_description = "Build and manage Docker images over the engine's REST API"

setuptools.setup(
    name="docker-image",
    version="0.1.0",
    description="Build and manage Docker images over the engine's REST API",
    long_description=long_description,
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    packages=setuptools.find_packages(where="src", include=["docker_image", "docker_image.*"]),
    install_requires=[
        "httpx",
        "pydantic>=2",
        "python-dotenv",
        "rich",
        "pathspec",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.9",
)
