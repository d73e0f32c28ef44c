"""Setup configuration for kb-rag."""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="kb-rag",
    version="0.1.0",
    author="Your Name",
    description="Retrieval-augmented question answering over managed knowledge bases",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "chromadb>=0.6.0",
        "faiss-cpu>=1.8.0",
        "chardet>=5.0.0,<6",
        "httpx>=0.27.0",
        "numpy>=1.24.0",
        "tqdm>=4.65.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "langchain>=0.3.0,<1.0",
        "langchain-community>=0.3.0,<0.4",
        "langchain-core>=0.3.0,<1.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
