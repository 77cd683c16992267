from setuptools import setup, find_packages

setup(
    name="aws-globalaccelerator-controller",
    version="0.1.0",
    description="kopf controller that builds AWS Global Accelerator models from GlobalAccelerator resources",
    packages=find_packages(),
    install_requires=[
        "kopf",
        "kubernetes",
        "boto3",
        "botocore",
        "urllib3>=2.3",
    ],
    extras_require={
        "test": ["pytest"],
    },
    python_requires=">=3.9",
)
