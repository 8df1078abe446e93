from peak_classifier.download import download_gff3

if __name__ == "__main__":
    path = download_gff3(release=115, out_dir="data/annotations", species="homo_sapiens", assembly="GRCh38")
    print(path)
