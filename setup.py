from setuptools import setup, find_packages

setup(name='cancelchain',
      version='0.0.1',
      description='Futures which can be canceled, with cancellation propagating through chains of derived futures',
      classifiers=[
          "Programming Language :: Python :: 3",
          "License :: OSI Approved :: MIT License",
          "Framework :: Trio",
      ],
      keywords='trio future promise cancellation',
      license='MIT',
      packages=find_packages(),
      python_requires='>=3.11',
      install_requires=[
          'trio',
          'outcome>=1.3',
      ],
      extras_require={
          'test': ['pytest'],
      },
)
