from setuptools import find_packages, setup


setup(
    name="trt-lower",
    version="0.1.0",
    description="Lower dataflow graphs into a TensorRT-style layer network, with two-phase op converters",
    package_dir={"": "src"},
    packages=find_packages("src"),
    python_requires=">=3.10",
    install_requires=[
        "numpy>=1.24",
    ],
    extras_require={
        "dev": [
            "pytest>=7",
        ],
    },
    zip_safe=False,
)
